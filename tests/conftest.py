"""
Shared fixtures for the registration API tests.

Each test gets a fresh in-memory SQLite database seeded with the default catalog. Outbound
collaborators (email/SMS delivery, Stripe) are replaced with in-process fakes so no test
touches the network.
"""
import os

# Configure before any onboarding module reads settings
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REGISTRATION_COOKIE_SECURE"] = "false"
os.environ["REGISTRATION_CLEANUP_ENABLED"] = "false"
os.environ["OTP_ECHO_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["STRIPE_SECRET_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from onboarding.config import get_settings
from onboarding.database import Base, get_db
from onboarding.main import app
from onboarding.models import TemporaryRegistration
from onboarding.routers import registration as registration_router
from onboarding.seed import seed_catalog
from onboarding.services import notifications, payments
from onboarding.services.payments import PaymentAuthorization

COOKIE = get_settings().registration_cookie_name
DECLINED_CARD = "pm_card_chargeDeclined"
VALID_CARD = "pm_card_visa"

REGISTER_PAYLOAD = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone_number": "+1 555 123 4567",
    "password": "analytical1",
    "consent_given": True,
}

INTERVIEW_ANSWERS = {
    "website_url": "https://acme.example",
    "business_type": "saas",
    "primary_products": "Project tracking for small teams",
    "target_audience": "Agencies",
    "target_regions": ["usa", "europe"],
    "seo_goals": ["traffic", "leads"],
    "monthly_budget": 2000,
    "has_existing_content": False,
}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_catalog(session)
    yield session
    session.close()


@pytest.fixture
def sent_codes(monkeypatch):
    """Every passcode the app tried to deliver, newest last."""
    sent = []

    def fake_send(method, destination, code):
        sent.append({"method": method, "destination": destination, "code": code})
        return True

    monkeypatch.setattr(notifications, "send_verification_code", fake_send)
    return sent


@pytest.fixture
def payment_calls(monkeypatch):
    """Fake payment gateway: DECLINED_CARD is declined, anything else is authorized."""
    calls = []

    def fake_authorize(plan, payment_method_id, *, email, registration_id, attempt):
        calls.append({"plan": plan.slug, "payment_method_id": payment_method_id, "attempt": attempt})
        if payment_method_id == DECLINED_CARD:
            return PaymentAuthorization(approved=False, decline_reason="Your card was declined.")
        return PaymentAuthorization(approved=True, reference=f"pi_test_{attempt}")

    monkeypatch.setattr(payments, "authorize_payment", fake_authorize)
    return calls


@pytest.fixture
def welcome_emails(monkeypatch):
    sent = []

    def fake_welcome(to_email, first_name, account_name):
        sent.append(to_email)
        return True

    monkeypatch.setattr(registration_router, "send_welcome_email", fake_welcome)
    return sent


@pytest.fixture
def make_client(session_factory, db, sent_codes, payment_calls, welcome_emails):
    """Factory for independent clients (separate cookie jars) against the same database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield lambda: TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def wizard(client, sent_codes):
    return Wizard(client, sent_codes)


class Wizard:
    """Drives one client through the registration steps."""

    def __init__(self, client, sent_codes):
        self.client = client
        self.sent_codes = sent_codes

    @property
    def registration_id(self):
        return self.client.cookies.get(COOKIE)

    def status(self):
        return self.client.get("/auth/registration/status").json()

    def register(self, **overrides):
        return self.client.post("/auth/register", json={**REGISTER_PAYLOAD, **overrides})

    def send_code(self, method="EMAIL"):
        return self.client.post("/auth/otp/send", json={"method": method})

    def verify(self, code):
        return self.client.post("/auth/otp/verify", json={"code": code})

    def last_code(self):
        return self.sent_codes[-1]["code"]

    def verify_contact(self, method="EMAIL"):
        response = self.send_code(method)
        assert response.status_code == 200, response.text
        return self.verify(self.last_code())

    def create_account(self, name="Acme Inc", slug="acme"):
        return self.client.post("/auth/account/create", json={"name": name, "slug": slug})

    def answer(self, answers, is_complete=False):
        return self.client.post("/auth/registration/interview", json={"answers": answers, "is_complete": is_complete})

    def complete_interview(self):
        return self.answer(INTERVIEW_ANSWERS, is_complete=True)

    def select_plan(self, plan_id="pro"):
        return self.client.post("/auth/registration/plan", json={"plan_id": plan_id})

    def pay(self, payment_method_id=VALID_CARD):
        return self.client.post("/auth/registration/payment", json={"payment_method_id": payment_method_id})

    def finalize(self, headers=None):
        return self.client.post("/auth/registration/finalize", headers=headers)

    def run_until(self, step, slug="acme", **form):
        """Complete every step before `step` with valid data."""
        actions = [
            ("VERIFY", lambda: self.register(**form)),
            ("ACCOUNT_SETUP", lambda: self.verify_contact()),
            ("INTERVIEW", lambda: self.create_account(slug=slug)),
            ("PLAN", lambda: self.complete_interview()),
            ("PAYMENT", lambda: self.select_plan()),
        ]
        for reached, action in actions:
            response = action()
            assert response.status_code == 200, response.text
            if reached == step:
                return
        if step == "READY":
            response = self.pay()
            assert response.status_code == 200, response.text


def cookie_header(registration_id):
    return {"Cookie": f"{COOKIE}={registration_id}"}


def fetch_registration(db, registration_id):
    db.expire_all()
    return db.get(TemporaryRegistration, registration_id)


def rewind(db, registration_id, **fields):
    """Overwrite stored fields, e.g. to move a deadline into the past."""
    reg = fetch_registration(db, registration_id)
    for name, value in fields.items():
        setattr(reg, name, value)
    db.commit()
