"""Finalize and the end-to-end journeys through the wizard."""
from datetime import timedelta

import pytest

from onboarding.models import Account, AuditLog, Membership, Plan, Subscription, User
from onboarding.services import finalizer
from onboarding.models.registration import utcnow
from conftest import COOKIE, DECLINED_CARD, INTERVIEW_ANSWERS, cookie_header, fetch_registration, rewind


def counts(db):
    db.expire_all()
    return {model.__name__: db.query(model).count() for model in (User, Account, Membership, Subscription)}


class TestFinalize:
    def test_creates_user_account_membership_and_subscription(self, wizard, db, welcome_emails):
        wizard.run_until("READY")
        registration_id = wizard.registration_id

        response = wizard.finalize()
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["already_finalized"] is False
        assert body["access_token"]
        assert body["account"]["slug"] == "acme"
        assert body["user"]["accounts"] == [{"id": body["account"]["id"], "name": "Acme Inc", "slug": "acme", "is_owner": True}]
        assert counts(db) == {"User": 1, "Account": 1, "Membership": 1, "Subscription": 1}

        membership = db.query(Membership).one()
        assert membership.role == "Owner" and membership.is_owner
        subscription = db.query(Subscription).one()
        assert subscription.status == "pending_capture"
        assert subscription.payment_reference == "pi_test_1"
        user = db.query(User).one()
        assert user.email_verified_at is not None
        assert user.last_selected_account_id == body["account"]["id"]
        assert welcome_emails == ["ada@example.com"]

        reg = fetch_registration(db, registration_id)
        assert reg.current_step.value == "COMPLETED"
        assert reg.hashed_password is None
        assert wizard.client.cookies.get(COOKIE) is None

    def test_replay_returns_first_result(self, wizard, db, welcome_emails):
        wizard.run_until("READY")
        registration_id = wizard.registration_id
        first = wizard.finalize().json()

        replay = wizard.finalize(headers=cookie_header(registration_id))
        assert replay.status_code == 200, replay.text
        second = replay.json()
        assert second["already_finalized"] is True
        assert second["user"]["id"] == first["user"]["id"]
        assert second["account"]["id"] == first["account"]["id"]
        assert second["subscription_id"] == first["subscription_id"]
        assert counts(db) == {"User": 1, "Account": 1, "Membership": 1, "Subscription": 1}
        assert len(welcome_emails) == 1

    def test_consumed_registration_accepts_no_more_edits(self, wizard):
        wizard.run_until("READY")
        registration_id = wizard.registration_id
        wizard.finalize()
        response = wizard.client.post(
            "/auth/account/create", json={"name": "Other", "slug": "other"}, headers=cookie_header(registration_id)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_FINALIZED"

        plan = wizard.client.post("/auth/registration/plan", json={"plan_id": "basic"}, headers=cookie_header(registration_id))
        assert plan.status_code == 409
        assert plan.json()["code"] == "ALREADY_FINALIZED"

    def test_not_ready_before_payment(self, wizard, db):
        wizard.run_until("PAYMENT")
        response = wizard.finalize()
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "NOT_READY"
        assert body["details"]["missing"] == ["payment authorization"]
        assert counts(db)["User"] == 0

    def test_not_ready_right_after_form(self, wizard):
        wizard.register()
        missing = wizard.finalize().json()["details"]["missing"]
        assert "email or phone verification" in missing
        assert "account setup" in missing

    def test_retired_plan_is_not_ready(self, wizard, db):
        wizard.run_until("READY")
        db.query(Plan).filter(Plan.slug == "pro").update({"is_active": False})
        db.commit()
        response = wizard.finalize()
        assert response.status_code == 409
        assert response.json()["details"]["missing"] == ["plan selection"]
        assert counts(db)["Subscription"] == 0

    def test_failure_mid_finalize_rolls_back_and_can_retry(self, wizard, db, monkeypatch):
        wizard.run_until("READY")
        registration_id = wizard.registration_id

        def broken_subscription(**kwargs):
            raise RuntimeError("subscription store unavailable")

        monkeypatch.setattr(finalizer, "Subscription", broken_subscription)
        with pytest.raises(RuntimeError):
            wizard.finalize()

        assert counts(db) == {"User": 0, "Account": 0, "Membership": 0, "Subscription": 0}
        reg = fetch_registration(db, registration_id)
        assert reg.current_step.value == "PAYMENT"
        assert reg.consumed_at is None
        assert reg.hashed_password is not None

        monkeypatch.setattr(finalizer, "Subscription", Subscription)
        response = wizard.finalize()
        assert response.status_code == 200, response.text
        assert response.json()["already_finalized"] is False
        assert counts(db) == {"User": 1, "Account": 1, "Membership": 1, "Subscription": 1}

    def test_registered_email_cannot_register_again(self, wizard, make_client, sent_codes):
        from conftest import Wizard

        wizard.run_until("READY")
        wizard.finalize()
        other = Wizard(make_client(), sent_codes)
        response = other.register()
        assert response.status_code == 409
        assert response.json()["code"] == "EMAIL_TAKEN"

    def test_finalize_is_audited(self, wizard, db):
        wizard.run_until("READY")
        registration_id = wizard.registration_id
        wizard.finalize()
        db.expire_all()
        entry = db.query(AuditLog).filter(AuditLog.category == "finalized").one()
        assert entry.registration_id == registration_id
        assert entry.meta["plan"] == "pro"


class TestLogin:
    def test_owner_can_sign_in(self, wizard):
        wizard.run_until("READY")
        token = wizard.finalize().json()["access_token"]

        me = wizard.client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["accounts"][0]["slug"] == "acme"

        login = wizard.client.post("/auth/login", json={"email": "ada@example.com", "password": "analytical1"})
        assert login.status_code == 200
        assert login.json()["user"]["first_name"] == "Ada"

        bad = wizard.client.post("/auth/login", json={"email": "ada@example.com", "password": "wrong-pass1"})
        assert bad.status_code == 401

    def test_me_requires_token(self, client):
        assert client.get("/auth/me").status_code == 401


class TestJourneys:
    def test_full_signup_with_one_declined_payment(self, wizard, db, sent_codes):
        assert wizard.register().status_code == 200
        assert wizard.send_code("EMAIL").status_code == 200
        assert wizard.verify(wizard.last_code()).status_code == 200
        assert wizard.create_account(name="Acme", slug="acme").status_code == 200

        fields = list(INTERVIEW_ANSWERS)
        for i, field in enumerate(fields):
            response = wizard.answer({field: INTERVIEW_ANSWERS[field]}, is_complete=(i == len(fields) - 1))
            assert response.status_code == 200, response.text

        assert wizard.select_plan("pro").status_code == 200
        assert wizard.pay(DECLINED_CARD).status_code == 402
        assert wizard.pay().status_code == 200

        response = wizard.finalize()
        assert response.status_code == 200, response.text
        db.expire_all()
        account = db.query(Account).one()
        assert account.slug == "acme"
        owners = db.query(Membership).filter(Membership.account_id == account.id, Membership.is_owner.is_(True)).all()
        assert len(owners) == 1

    def test_idle_registration_expires(self, wizard, db):
        wizard.run_until("READY")
        registration_id = wizard.registration_id
        rewind(db, registration_id, expires_at=utcnow() - timedelta(seconds=1))
        headers = cookie_header(registration_id)

        calls = [
            lambda: wizard.client.post("/auth/account/create", json={"name": "Acme", "slug": "acme"}, headers=headers),
            lambda: wizard.client.post("/auth/otp/verify", json={"code": "123456"}, headers=headers),
            lambda: wizard.client.post("/auth/registration/finalize", headers=headers),
        ]
        for call in calls:
            response = call()
            assert response.status_code == 410
            assert response.json()["code"] == "REGISTRATION_EXPIRED"

        status = wizard.client.get("/auth/registration/status", headers=headers).json()
        assert status["has_registration"] is False
        assert status["expired"] is True
        assert counts(db)["User"] == 0

    def test_expired_registration_can_start_over(self, wizard, db):
        wizard.register()
        old_id = wizard.registration_id
        rewind(db, old_id, expires_at=utcnow() - timedelta(seconds=1))
        response = wizard.client.post("/auth/register", json={
            "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
            "password": "analytical1", "consent_given": True,
        }, headers=cookie_header(old_id))
        assert response.status_code == 200
        assert response.json()["current_step"] == "VERIFY"
        assert wizard.registration_id not in (None, old_id)
