"""In-progress signup: identity, account draft, interview answers, plan and the live OTP challenge.

Nothing permanent is created until the registration is finalized; after that the row stays
behind as a consumed tombstone (step COMPLETED) so replays of finalize can be recognised.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum as SQLEnum
from sqlalchemy.sql import func

from onboarding.database import Base, JSONType


class RegistrationStep(str, enum.Enum):
    FORM = "FORM"
    VERIFY = "VERIFY"
    ACCOUNT_SETUP = "ACCOUNT_SETUP"
    INTERVIEW = "INTERVIEW"
    PLAN = "PLAN"
    PAYMENT = "PAYMENT"
    COMPLETED = "COMPLETED"

    @property
    def index(self) -> int:
        return STEP_ORDER.index(self)

    def next(self) -> "RegistrationStep":
        if self is RegistrationStep.COMPLETED:
            return self
        return STEP_ORDER[self.index + 1]

    @classmethod
    def from_index(cls, index: int) -> "RegistrationStep":
        return STEP_ORDER[index]


STEP_ORDER = list(RegistrationStep)


class OtpMethod(str, enum.Enum):
    SMS = "SMS"
    EMAIL = "EMAIL"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC so comparisons work on every backend."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TemporaryRegistration(Base):
    __tablename__ = "temporary_registrations"

    # secrets.token_urlsafe(32); the only value the client ever sees (HTTP-only cookie)
    id = Column(String(64), primary_key=True)
    current_step = Column(SQLEnum(RegistrationStep), nullable=False, default=RegistrationStep.FORM)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone_number = Column(String(50), nullable=True)
    hashed_password = Column(String(255), nullable=True)  # cleared once consumed
    consent_given = Column(Boolean, default=False, nullable=False)
    consent_at = Column(DateTime(timezone=True), nullable=True)

    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    phone_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Account draft; unique so two live registrations cannot hold the same slug
    account_name = Column(String(255), nullable=True)
    account_slug = Column(String(50), nullable=True, unique=True)

    interview_answers = Column(JSONType, nullable=True)

    selected_plan_id = Column(Integer, nullable=True)

    payment_reference = Column(String(255), nullable=True)
    payment_authorized_at = Column(DateTime(timezone=True), nullable=True)
    payment_failure_reason = Column(String(500), nullable=True)
    payment_attempts = Column(Integer, nullable=False, default=0)

    # Live OTP challenge (at most one)
    otp_method = Column(SQLEnum(OtpMethod), nullable=True)
    otp_code_hash = Column(String(255), nullable=True)
    otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    otp_attempts_remaining = Column(Integer, nullable=True)
    otp_resend_available_at = Column(DateTime(timezone=True), nullable=True)

    # Set by finalize
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    user_id = Column(Integer, nullable=True)
    account_id = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Compare-and-swap on every UPDATE: a writer holding a stale copy gets StaleDataError.
    __mapper_args__ = {"version_id_col": version}

    @property
    def step_index(self) -> int:
        return self.current_step.index

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.is_consumed:
            return False
        return as_utc(self.expires_at) < (now or utcnow())

    @property
    def is_contact_verified(self) -> bool:
        return bool(self.email_verified_at or self.phone_verified_at)

    @property
    def has_active_challenge(self) -> bool:
        return self.otp_code_hash is not None

    def revoke_code(self) -> None:
        """Invalidate the issued code but keep the resend cooldown running."""
        self.otp_code_hash = None
        self.otp_expires_at = None
        self.otp_attempts_remaining = None

    def clear_challenge(self) -> None:
        self.otp_method = None
        self.otp_code_hash = None
        self.otp_expires_at = None
        self.otp_attempts_remaining = None
        self.otp_resend_available_at = None
