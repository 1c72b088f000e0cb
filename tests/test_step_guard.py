"""Server-authoritative step order: status, RequestStep and re-submission."""
from conftest import REGISTER_PAYLOAD, fetch_registration

STEPS = ["FORM", "VERIFY", "ACCOUNT_SETUP", "INTERVIEW", "PLAN", "PAYMENT", "COMPLETED"]


class TestRegistrationStatus:
    def test_no_cookie_starts_at_form(self, client):
        response = client.get("/auth/registration/status")
        assert response.status_code == 200
        data = response.json()
        assert data["has_registration"] is False
        assert data["current_step"] == "FORM"
        assert data["current_step_index"] == 0

    def test_register_sets_cookie_and_moves_to_verify(self, wizard, db):
        response = wizard.register()
        assert response.status_code == 200, response.text
        assert response.json()["current_step"] == "VERIFY"
        assert wizard.registration_id

        status = wizard.status()
        assert status["has_registration"] is True
        assert status["current_step"] == "VERIFY"
        assert status["navigable_steps"] == ["FORM", "VERIFY"]
        assert status["registration"]["email"] == REGISTER_PAYLOAD["email"]
        assert "password" not in status["registration"]

        reg = fetch_registration(db, wizard.registration_id)
        assert reg.hashed_password and reg.hashed_password != REGISTER_PAYLOAD["password"]

    def test_unknown_cookie_reports_no_registration(self, client):
        client.cookies.set("temp_reg_id", "does-not-exist")
        assert client.get("/auth/registration/status").json()["has_registration"] is False

    def test_cancel_forgets_registration(self, wizard):
        wizard.register()
        response = wizard.client.post("/auth/registration/cancel")
        assert response.status_code == 200
        assert response.json()["cancelled"] is True
        assert wizard.status()["has_registration"] is False


class TestRequestStep:
    def test_steps_at_or_before_current_are_readable(self, wizard):
        wizard.run_until("INTERVIEW")
        for step in STEPS[:4]:
            response = wizard.client.get(f"/auth/registration/step/{step}")
            assert response.status_code == 200, step
            assert response.json()["current_step"] == "INTERVIEW"

        form = wizard.client.get("/auth/registration/step/FORM").json()["data"]
        assert form["email"] == REGISTER_PAYLOAD["email"]
        account = wizard.client.get("/auth/registration/step/ACCOUNT_SETUP").json()["data"]
        assert account == {"name": "Acme Inc", "slug": "acme"}

    def test_steps_beyond_current_are_rejected(self, wizard):
        wizard.run_until("INTERVIEW")
        for step in STEPS[4:]:
            response = wizard.client.get(f"/auth/registration/step/{step}")
            assert response.status_code == 409, step
            body = response.json()
            assert body["code"] == "STEP_NOT_REACHED"
            assert body["details"]["current_step"] == "INTERVIEW"
            assert body["details"]["requested_step"] == step

    def test_skipping_ahead_on_submit_is_rejected(self, wizard):
        wizard.register()
        for response in (
            wizard.create_account(),
            wizard.answer({"business_type": "saas"}),
            wizard.select_plan(),
            wizard.pay(),
        ):
            assert response.status_code == 409
            assert response.json()["code"] == "STEP_NOT_REACHED"
        assert wizard.status()["current_step"] == "VERIFY"

    def test_unknown_step_name_is_a_validation_error(self, wizard):
        wizard.register()
        response = wizard.client.get("/auth/registration/step/SHIPPING")
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_FAILED"

    def test_without_registration_is_not_found(self, client):
        response = client.get("/auth/registration/step/FORM")
        assert response.status_code == 404
        assert response.json()["code"] == "REGISTRATION_NOT_FOUND"


class TestResubmission:
    def test_editing_an_earlier_step_does_not_move_backward(self, wizard):
        wizard.run_until("PLAN")

        response = wizard.create_account(name="Acme Labs", slug="acme-labs")
        assert response.status_code == 200, response.text
        assert response.json()["current_step"] == "PLAN"

        response = wizard.register(first_name="Augusta")
        assert response.status_code == 200, response.text
        assert response.json()["current_step"] == "PLAN"

        account = wizard.client.get("/auth/registration/step/ACCOUNT_SETUP").json()["data"]
        assert account == {"name": "Acme Labs", "slug": "acme-labs"}
        form = wizard.client.get("/auth/registration/step/FORM").json()["data"]
        assert form["first_name"] == "Augusta"

    def test_verified_email_cannot_change(self, wizard):
        wizard.run_until("ACCOUNT_SETUP")
        response = wizard.register(email="someone-else@example.com")
        assert response.status_code == 422
        assert response.json()["details"] == {"field": "email"}

    def test_step_index_never_decreases(self, wizard):
        seen = []
        actions = [
            wizard.register,
            wizard.verify_contact,
            wizard.create_account,
            lambda: wizard.register(last_name="King"),
            wizard.complete_interview,
            lambda: wizard.create_account(slug="acme-two"),
            wizard.select_plan,
            lambda: wizard.select_plan("basic"),
        ]
        for action in actions:
            assert action().status_code == 200
            seen.append(wizard.status()["current_step_index"])
        assert seen == sorted(seen)
        assert seen[-1] == STEPS.index("PAYMENT")


class TestFormValidation:
    def test_invalid_form_is_rejected_without_creating_registration(self, wizard):
        response = wizard.register(password="short", consent_given=False)
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_FAILED"
        fields = {tuple(e["loc"])[-1] for e in body["details"]}
        assert {"password", "consent_given"} <= fields
        assert wizard.registration_id is None

    def test_bad_phone_is_rejected(self, wizard):
        response = wizard.register(phone_number="123")
        assert response.status_code == 422
