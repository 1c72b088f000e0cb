"""Finalize: turn a complete temporary registration into User, Account, Membership and Subscription.

Runs as one transaction. The registration row is kept as a consumed tombstone recording the
identities it produced, and Account.registration_id is unique, so a replayed or concurrent
finalize can only ever observe the first result (AlreadyFinalized) and never create a second set.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from onboarding.errors import AlreadyFinalized, ConcurrentModification, EmailTaken, NotReady, SlugTaken
from onboarding.models.account import (
    Account,
    Membership,
    Subscription,
    OWNER_ROLE,
    MEMBERSHIP_ACTIVE,
    SUBSCRIPTION_PENDING_CAPTURE,
)
from onboarding.models.catalog import Plan
from onboarding.models.registration import RegistrationStep, TemporaryRegistration, utcnow
from onboarding.models.user import User
from onboarding.services.audit_log import create_log, CATEGORY_FINALIZED
from onboarding.services.registration import load_registration

log = logging.getLogger("uvicorn.error")

SUBSCRIPTION_PERIOD_DAYS = {"MONTHLY": 30, "YEARLY": 365}


@dataclass
class FinalizeResult:
    user: User
    account: Account
    subscription: Subscription | None
    already_finalized: bool = False


def _missing_requirements(db: Session, reg: TemporaryRegistration) -> list[str]:
    missing = []
    if reg.current_step.index < RegistrationStep.PAYMENT.index:
        missing.append(f"step {reg.current_step.value} completion")
    if not reg.is_contact_verified:
        missing.append("email or phone verification")
    if not reg.account_name or not reg.account_slug:
        missing.append("account setup")
    plan = db.get(Plan, reg.selected_plan_id) if reg.selected_plan_id else None
    if not plan or not plan.is_active:
        missing.append("plan selection")
    if not reg.payment_authorized_at:
        missing.append("payment authorization")
    if not reg.hashed_password:
        missing.append("password")
    return missing


def _replayed_result(db: Session, registration_id: str) -> AlreadyFinalized | None:
    reg = db.get(TemporaryRegistration, registration_id)
    if reg is not None and reg.is_consumed:
        return AlreadyFinalized(reg.user_id, reg.account_id)
    return None


def finalize_registration(db: Session, registration_id: str | None, *, audit: dict | None = None) -> FinalizeResult:
    reg = load_registration(db, registration_id)
    missing = _missing_requirements(db, reg)
    if missing:
        raise NotReady(missing)

    now = utcnow()
    plan = db.get(Plan, reg.selected_plan_id)
    try:
        user = User(
            email=reg.email,
            hashed_password=reg.hashed_password,  # already hashed
            first_name=reg.first_name,
            last_name=reg.last_name,
            phone_number=reg.phone_number,
            email_verified_at=reg.email_verified_at,
            phone_verified_at=reg.phone_verified_at,
            consent_given=reg.consent_given,
            consent_at=reg.consent_at,
            is_active=True,
        )
        account = Account(
            name=reg.account_name,
            slug=reg.account_slug,
            billing_email=reg.email,
            general_email=reg.email,
            registration_id=reg.id,
        )
        db.add_all([user, account])
        db.flush()

        db.add(Membership(account_id=account.id, user_id=user.id, role=OWNER_ROLE, is_owner=True, status=MEMBERSHIP_ACTIVE))
        subscription = Subscription(
            account_id=account.id,
            plan_id=plan.id,
            status=SUBSCRIPTION_PENDING_CAPTURE,
            billing_interval=plan.interval,
            payment_reference=reg.payment_reference,
            current_period_start=now,
            current_period_end=now + timedelta(days=SUBSCRIPTION_PERIOD_DAYS.get(plan.interval, 30)),
        )
        db.add(subscription)
        user.last_selected_account_id = account.id

        # Consume: keep a tombstone with the produced identities, drop secrets
        reg.current_step = RegistrationStep.COMPLETED
        reg.consumed_at = now
        reg.user_id = user.id
        reg.account_id = account.id
        reg.hashed_password = None
        reg.clear_challenge()
        create_log(
            db,
            CATEGORY_FINALIZED,
            "Registration finalized",
            f"Account {account.slug} and owner {user.email} created.",
            registration_id=reg.id,
            actor_user_id=user.id,
            actor_email=user.email,
            meta={"account_id": account.id, "plan": plan.slug, "payment_reference": reg.payment_reference},
            **(audit or {}),
        )
        db.commit()
    except (IntegrityError, StaleDataError) as e:
        db.rollback()
        replay = _replayed_result(db, registration_id)
        if replay is not None:
            raise replay
        if isinstance(e, StaleDataError):
            raise ConcurrentModification()
        if db.query(User.id).filter(User.email == reg.email).first():
            raise EmailTaken("A user with this email already exists. Please sign in instead.")
        if db.query(Account.id).filter(Account.slug == reg.account_slug).first():
            raise SlugTaken("This account slug is no longer available. Please choose a different one.")
        raise
    except Exception:
        db.rollback()
        log.exception("[Registration] %s finalize failed; nothing was created", registration_id[:8])
        raise

    db.refresh(user)
    db.refresh(account)
    log.info("[Registration] %s finalized: user=%s account=%s", registration_id[:8], user.id, account.slug)
    return FinalizeResult(user=user, account=account, subscription=subscription)


def load_finalized(db: Session, replay: AlreadyFinalized) -> FinalizeResult:
    """Identities produced by the first successful finalize, for answering a replay."""
    user = db.get(User, replay.user_id)
    account = db.get(Account, replay.account_id)
    subscription = (
        db.query(Subscription).filter(Subscription.account_id == replay.account_id).order_by(Subscription.id).first()
    )
    return FinalizeResult(user=user, account=account, subscription=subscription, already_finalized=True)
