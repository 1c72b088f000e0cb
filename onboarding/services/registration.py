"""Registration step guard: the server-side source of truth for how far a signup has got.

Every mutation is one read-modify-write of a TemporaryRegistration row. The row is read
with SELECT ... FOR UPDATE where the backend supports it, and the version column turns a
lost race into ConcurrentModification instead of a silent overwrite.
"""
import logging
import re
import secrets
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from onboarding.config import get_settings
from onboarding.errors import (
    AlreadyFinalized,
    ConcurrentModification,
    EmailTaken,
    PaymentDeclined,
    RegistrationExpired,
    RegistrationNotFound,
    SlugTaken,
    StepNotReached,
    ValidationFailed,
)
from onboarding.models.account import Account
from onboarding.models.catalog import InterviewQuestion, Plan
from onboarding.models.registration import (
    RegistrationStep,
    STEP_ORDER,
    TemporaryRegistration,
    as_utc,
    utcnow,
)
from onboarding.models.user import User
from onboarding.schemas.registration import RegisterRequest
from onboarding.services import payments
from onboarding.services.audit_log import create_log, CATEGORY_STATUS_CHANGE, CATEGORY_FAILED_ATTEMPT
from onboarding.services.auth import get_password_hash

log = logging.getLogger("uvicorn.error")

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 50


def new_registration_id() -> str:
    return secrets.token_urlsafe(32)


# ---- loading and committing -------------------------------------------------


def load_registration(db: Session, registration_id: str | None, *, allow_consumed: bool = False) -> TemporaryRegistration:
    """Lock and return the live registration, failing closed on missing, expired or consumed records."""
    if not registration_id:
        raise RegistrationNotFound("No registration in progress. Please start over.")
    reg = (
        db.query(TemporaryRegistration)
        .filter(TemporaryRegistration.id == registration_id)
        .with_for_update()
        .first()
    )
    if not reg:
        raise RegistrationNotFound()
    if reg.is_consumed and not allow_consumed:
        raise AlreadyFinalized(reg.user_id, reg.account_id)
    if reg.is_expired():
        raise RegistrationExpired()
    return reg


def commit(db: Session) -> None:
    """Commit, mapping a lost compare-and-swap on the version column to ConcurrentModification."""
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConcurrentModification()


def guard_step(reg: TemporaryRegistration, step: RegistrationStep) -> None:
    """Reject any step the server has not reached yet."""
    if step.index > reg.step_index:
        raise StepNotReached(reg.current_step, step)


def advance(db: Session, reg: TemporaryRegistration, step: RegistrationStep, *, audit: dict | None = None) -> bool:
    """Move current_step forward by one, only when `step` is the current step. Never moves backward."""
    if reg.current_step != step or step == RegistrationStep.COMPLETED:
        return False
    previous = reg.current_step
    reg.current_step = step.next()
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Registration step completed",
        f"Registration advanced from {previous.value} to {reg.current_step.value}.",
        registration_id=reg.id,
        actor_email=reg.email,
        meta={"from_step": previous, "to_step": reg.current_step},
        **(audit or {}),
    )
    log.info("[Registration] %s advanced %s -> %s", reg.id[:8], previous.value, reg.current_step.value)
    return True


# ---- read side --------------------------------------------------------------


def active_questions(db: Session) -> list[InterviewQuestion]:
    return (
        db.query(InterviewQuestion)
        .filter(InterviewQuestion.is_active.is_(True))
        .order_by(InterviewQuestion.sort_order, InterviewQuestion.id)
        .all()
    )


def ordered_answers(reg: TemporaryRegistration, questions: list[InterviewQuestion]) -> dict[str, Any]:
    """Answers in configured question order; answers to retired questions follow at the end."""
    stored = dict(reg.interview_answers or {})
    ordered = {q.field_name: stored.pop(q.field_name) for q in questions if q.field_name in stored}
    ordered.update(stored)
    return ordered


def _is_answered(value: Any) -> bool:
    return value is not None and value != "" and value != []


def missing_answers(reg: TemporaryRegistration, questions: list[InterviewQuestion]) -> list[str]:
    stored = reg.interview_answers or {}
    return [q.field_name for q in questions if not _is_answered(stored.get(q.field_name))]


def _plan_summary(plan: Plan | None) -> dict | None:
    if not plan:
        return None
    return {
        "id": plan.slug,
        "name": plan.name,
        "price_cents": plan.price_cents,
        "currency": plan.currency,
        "interval": plan.interval,
    }


def _challenge_view(reg: TemporaryRegistration) -> dict | None:
    if not reg.has_active_challenge:
        return None
    return {
        "method": reg.otp_method,
        "expires_at": as_utc(reg.otp_expires_at),
        "attempts_remaining": reg.otp_attempts_remaining,
        "resend_available_at": as_utc(reg.otp_resend_available_at),
    }


def step_data(db: Session, reg: TemporaryRegistration, step: RegistrationStep) -> dict[str, Any]:
    """Values needed to render `step`, including whatever was submitted before."""
    if step == RegistrationStep.FORM:
        return {
            "first_name": reg.first_name,
            "last_name": reg.last_name,
            "email": reg.email,
            "phone_number": reg.phone_number,
            "consent_given": reg.consent_given,
        }
    if step == RegistrationStep.VERIFY:
        return {
            "email": reg.email,
            "phone_number": reg.phone_number,
            "email_verified": reg.email_verified_at is not None,
            "phone_verified": reg.phone_verified_at is not None,
            "challenge": _challenge_view(reg),
        }
    if step == RegistrationStep.ACCOUNT_SETUP:
        return {"name": reg.account_name, "slug": reg.account_slug}
    if step == RegistrationStep.INTERVIEW:
        questions = active_questions(db)
        return {
            "answers": ordered_answers(reg, questions),
            "missing": missing_answers(reg, questions),
        }
    plan = db.get(Plan, reg.selected_plan_id) if reg.selected_plan_id else None
    if step == RegistrationStep.PLAN:
        return {"plan": _plan_summary(plan)}
    if step == RegistrationStep.PAYMENT:
        return {
            "plan": _plan_summary(plan),
            "payment_authorized": reg.payment_authorized_at is not None,
            "payment_failure_reason": reg.payment_failure_reason,
        }
    return {"user_id": reg.user_id, "account_id": reg.account_id}


def request_step(db: Session, registration_id: str | None, step: RegistrationStep) -> tuple[TemporaryRegistration, dict]:
    """RequestStep: succeeds iff step <= current_step."""
    reg = load_registration(db, registration_id)
    guard_step(reg, step)
    return reg, step_data(db, reg, step)


def registration_status(db: Session, registration_id: str | None) -> dict:
    """Canonical status for the wizard. Missing, expired and consumed registrations all restart at FORM."""
    status = {"has_registration": False}
    if not registration_id:
        return status
    try:
        reg = load_registration(db, registration_id)
    except RegistrationExpired:
        return {**status, "expired": True}
    except (RegistrationNotFound, AlreadyFinalized):
        return status
    return {
        "has_registration": True,
        "current_step": reg.current_step,
        "current_step_index": reg.step_index,
        "navigable_steps": STEP_ORDER[: reg.step_index + 1],
        "expires_at": as_utc(reg.expires_at),
        "registration": {
            **step_data(db, reg, RegistrationStep.FORM),
            "email_verified": reg.email_verified_at is not None,
            "phone_verified": reg.phone_verified_at is not None,
            "account_name": reg.account_name,
            "account_slug": reg.account_slug,
            "interview_answers": ordered_answers(reg, active_questions(db)),
            "selected_plan": _plan_summary(db.get(Plan, reg.selected_plan_id) if reg.selected_plan_id else None),
            "payment_authorized": reg.payment_authorized_at is not None,
        },
    }


# ---- FORM -------------------------------------------------------------------


def _email_registered(db: Session, email: str) -> bool:
    return db.query(User.id).filter(User.email == email).first() is not None


def submit_form(db: Session, registration_id: str | None, data: RegisterRequest, *, audit: dict | None = None) -> TemporaryRegistration:
    """Create a registration (FORM -> VERIFY), or re-edit the identity of the caller's live one.

    A stale cookie (unknown, expired or already finalized) starts a fresh registration.
    """
    if _email_registered(db, data.email):
        raise EmailTaken()

    reg = None
    if registration_id:
        try:
            reg = load_registration(db, registration_id)
        except (RegistrationNotFound, RegistrationExpired, AlreadyFinalized):
            db.rollback()
            reg = None

    now = utcnow()
    if reg is None:
        settings = get_settings()
        reg = TemporaryRegistration(
            id=new_registration_id(),
            current_step=RegistrationStep.FORM,
            email=data.email,
            expires_at=now + timedelta(days=settings.registration_ttl_days),
        )
        db.add(reg)
    else:
        if reg.email_verified_at and data.email != reg.email:
            raise ValidationFailed("Email address was already verified and cannot be changed.", {"field": "email"})
        if reg.phone_verified_at and (data.phone_number or None) != reg.phone_number:
            raise ValidationFailed("Phone number was already verified and cannot be changed.", {"field": "phone_number"})
        if data.email != reg.email or (data.phone_number or None) != reg.phone_number:
            # A code already sent to the old destination must not verify the new one
            reg.revoke_code()
        reg.email = data.email

    reg.first_name = data.first_name
    reg.last_name = data.last_name
    reg.phone_number = data.phone_number or None
    reg.hashed_password = get_password_hash(data.password)
    reg.consent_given = True
    reg.consent_at = now
    advance(db, reg, RegistrationStep.FORM, audit=audit)
    commit(db)
    db.refresh(reg)
    return reg


# ---- ACCOUNT_SETUP ----------------------------------------------------------


def slug_format_error(slug: str) -> str | None:
    if len(slug) < SLUG_MIN_LENGTH:
        return f"Slug must be at least {SLUG_MIN_LENGTH} characters long"
    if len(slug) > SLUG_MAX_LENGTH:
        return f"Slug must be at most {SLUG_MAX_LENGTH} characters long"
    if not SLUG_PATTERN.match(slug):
        return "Slug must contain only lowercase letters, numbers, and hyphens"
    return None


def _slug_holder(db: Session, slug: str, registration_id: str | None) -> TemporaryRegistration | None:
    query = db.query(TemporaryRegistration).filter(TemporaryRegistration.account_slug == slug)
    if registration_id:
        query = query.filter(TemporaryRegistration.id != registration_id)
    return query.first()


def check_slug(db: Session, slug: str, registration_id: str | None = None) -> tuple[bool, str | None]:
    """Availability probe for the UI. Not a guarantee: the unique constraints decide at submit time."""
    error = slug_format_error(slug)
    if error:
        return False, error
    if db.query(Account.id).filter(Account.slug == slug).first():
        return False, "This slug is already taken"
    holder = _slug_holder(db, slug, registration_id)
    if holder and not holder.is_expired():
        return False, "This slug is already taken"
    return True, None


def submit_account_setup(
    db: Session, registration_id: str | None, name: str, slug: str, *, audit: dict | None = None
) -> TemporaryRegistration:
    reg = load_registration(db, registration_id)
    guard_step(reg, RegistrationStep.ACCOUNT_SETUP)
    error = slug_format_error(slug)
    if error:
        raise ValidationFailed(error, {"field": "slug"})

    if slug != reg.account_slug:
        available, reason = check_slug(db, slug, reg.id)
        if not available:
            raise SlugTaken(reason)
        holder = _slug_holder(db, slug, reg.id)
        if holder is not None:
            # Expired registrations are inert; release their claim
            holder.account_slug = None
            db.flush()

    reg.account_name = name
    reg.account_slug = slug
    advance(db, reg, RegistrationStep.ACCOUNT_SETUP, audit=audit)
    try:
        commit(db)
    except IntegrityError:
        db.rollback()
        log.info("[Registration] slug %s claimed concurrently by another registration", slug)
        raise SlugTaken()
    db.refresh(reg)
    return reg


# ---- INTERVIEW --------------------------------------------------------------


def _validate_answer(question: InterviewQuestion, value: Any) -> None:
    pattern = (question.validation or {}).get("pattern")
    if pattern and isinstance(value, str) and not re.search(pattern, value):
        message = (question.validation or {}).get("error_message") or f"Invalid value for {question.field_name}"
        raise ValidationFailed(message, {"field": question.field_name})


def save_interview(
    db: Session,
    registration_id: str | None,
    answers: dict[str, Any],
    is_complete: bool,
    *,
    audit: dict | None = None,
) -> tuple[TemporaryRegistration, list[str]]:
    """Merge answers into the stored interview. Each call is persisted before returning.

    Returns the registration and the fields still unanswered.
    """
    reg = load_registration(db, registration_id)
    guard_step(reg, RegistrationStep.INTERVIEW)
    questions = active_questions(db)
    by_field = {q.field_name: q for q in questions}

    merged = dict(reg.interview_answers or {})
    for field, value in answers.items():
        question = by_field.get(field)
        if question is None:
            raise ValidationFailed(f"Unknown interview question: {field}", {"field": field})
        if not _is_answered(value):
            if reg.current_step != RegistrationStep.INTERVIEW:
                raise ValidationFailed("Answers cannot be cleared once the interview is complete.", {"field": field})
            merged.pop(field, None)
            continue
        _validate_answer(question, value)
        merged[field] = value
    # Assign a new dict so SQLAlchemy detects the JSON change (in-place mutation may not be persisted).
    reg.interview_answers = merged

    missing = missing_answers(reg, questions)
    if is_complete:
        if missing:
            commit(db)
            raise ValidationFailed("Please answer every interview question.", {"missing": missing})
        advance(db, reg, RegistrationStep.INTERVIEW, audit=audit)
    commit(db)
    db.refresh(reg)
    return reg, missing


# ---- PLAN -------------------------------------------------------------------


def submit_plan(db: Session, registration_id: str | None, plan_slug: str, *, audit: dict | None = None) -> tuple[TemporaryRegistration, Plan]:
    reg = load_registration(db, registration_id)
    guard_step(reg, RegistrationStep.PLAN)
    plan = db.query(Plan).filter(Plan.slug == (plan_slug or "").strip(), Plan.is_active.is_(True)).first()
    if not plan:
        raise ValidationFailed("Invalid plan selected", {"field": "plan_id"})
    if reg.selected_plan_id != plan.id and reg.payment_authorized_at:
        # The authorization was for the old plan's amount
        reg.payment_reference = None
        reg.payment_authorized_at = None
    reg.selected_plan_id = plan.id
    advance(db, reg, RegistrationStep.PLAN, audit=audit)
    commit(db)
    db.refresh(reg)
    return reg, plan


# ---- PAYMENT ----------------------------------------------------------------


def submit_payment(
    db: Session, registration_id: str | None, payment_method_id: str, *, audit: dict | None = None
) -> TemporaryRegistration:
    """Authorize the first period with the payment collaborator.

    Approval makes the registration finalize-eligible (the step stays PAYMENT until finalize).
    A decline is recorded and raised as PaymentDeclined; the caller may retry.
    """
    reg = load_registration(db, registration_id)
    guard_step(reg, RegistrationStep.PAYMENT)
    if reg.payment_authorized_at:
        return reg
    plan = db.get(Plan, reg.selected_plan_id) if reg.selected_plan_id else None
    if not plan or not plan.is_active:
        raise ValidationFailed("Selected plan is no longer available. Please choose another plan.", {"field": "plan_id"})

    attempt = (reg.payment_attempts or 0) + 1
    result = payments.authorize_payment(
        plan, payment_method_id, email=reg.email, registration_id=reg.id, attempt=attempt
    )
    reg.payment_attempts = attempt
    if not result.approved:
        reg.payment_failure_reason = result.decline_reason
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Payment declined",
            f"Payment authorization declined for plan {plan.slug}.",
            registration_id=reg.id,
            actor_email=reg.email,
            meta={"attempt": attempt, "reason": result.decline_reason, "reference": result.reference},
            **(audit or {}),
        )
        commit(db)
        raise PaymentDeclined(result.decline_reason)

    reg.payment_reference = result.reference
    reg.payment_authorized_at = utcnow()
    reg.payment_failure_reason = None
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Payment authorized",
        f"Payment authorized for plan {plan.slug}.",
        registration_id=reg.id,
        actor_email=reg.email,
        meta={"attempt": attempt, "reference": result.reference},
        **(audit or {}),
    )
    commit(db)
    db.refresh(reg)
    return reg


# ---- cancel -----------------------------------------------------------------


def cancel_registration(db: Session, registration_id: str | None) -> bool:
    """Abandon the caller's in-progress registration. Consumed tombstones are left for replay detection."""
    if not registration_id:
        return False
    reg = db.query(TemporaryRegistration).filter(TemporaryRegistration.id == registration_id).with_for_update().first()
    if not reg or reg.is_consumed:
        return False
    db.delete(reg)
    commit(db)
    log.info("[Registration] %s cancelled by client", registration_id[:8])
    return True
