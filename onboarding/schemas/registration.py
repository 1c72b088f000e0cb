"""Registration workflow schemas."""
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator

from onboarding.config import get_settings
from onboarding.models.registration import OtpMethod, RegistrationStep

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15


def _normalize_phone(value: str | None) -> str:
    if value is None:
        return ""
    return re.sub(r"\D", "", value.strip())


def _validate_phone_digits(phone: str) -> None:
    digits = _normalize_phone(phone)
    if len(digits) < PHONE_MIN_DIGITS:
        raise ValueError(f"Phone number must have at least {PHONE_MIN_DIGITS} digits (e.g. 5551234567 or +1 555 123 4567).")
    if len(digits) > PHONE_MAX_DIGITS:
        raise ValueError(f"Phone number cannot exceed {PHONE_MAX_DIGITS} digits.")


class RegisterRequest(BaseModel):
    """FORM step."""
    first_name: str
    last_name: str
    email: EmailStr
    phone_number: str | None = None
    password: str
    consent_given: bool = False

    @field_validator("first_name", "last_name")
    @classmethod
    def name_present(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("This field is required")
        return v

    @field_validator("email")
    @classmethod
    def email_lower(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("phone_number")
    @classmethod
    def phone_valid(cls, v: str | None) -> str | None:
        v = (v or "").strip()
        if not v:
            return None
        _validate_phone_digits(v)
        return v

    @field_validator("password")
    @classmethod
    def password_policy(cls, v: str) -> str:
        min_len = get_settings().password_min_length
        if len(v or "") < min_len:
            raise ValueError(f"Password must be at least {min_len} characters")
        if not re.search(r"[A-Za-z]", v) or not re.search(r"\d", v):
            raise ValueError("Password must contain at least one letter and one number")
        return v

    @field_validator("consent_given")
    @classmethod
    def consent_required(cls, v: bool) -> bool:
        if not v:
            raise ValueError("You must agree to the terms and conditions")
        return v


class OtpSendRequest(BaseModel):
    method: OtpMethod


class OtpSendResponse(BaseModel):
    status: str = "ok"
    method: OtpMethod
    expires_at: datetime
    resend_available_at: datetime
    attempts_remaining: int
    # Only present when OTP_ECHO_ENABLED (development)
    code: str | None = None


class OtpVerifyRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def digits_only(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.isdigit():
            raise ValueError("Verification code must contain digits only")
        return v


class SlugCheckRequest(BaseModel):
    slug: str

    @field_validator("slug")
    @classmethod
    def normalize(cls, v: str) -> str:
        return (v or "").strip().lower()


class SlugCheckResponse(BaseModel):
    slug: str
    available: bool
    reason: str | None = None


class AccountSetupRequest(BaseModel):
    name: str
    slug: str

    @field_validator("name")
    @classmethod
    def name_present(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Account name is required")
        return v

    @field_validator("slug")
    @classmethod
    def normalize(cls, v: str) -> str:
        return (v or "").strip().lower()


class InterviewRequest(BaseModel):
    """One or more set-field operations; send one answer at a time for autosave."""
    answers: dict[str, Any] = Field(default_factory=dict)
    is_complete: bool = False


class PlanRequest(BaseModel):
    plan_id: str  # plan slug, e.g. "basic", "pro", "enterprise"


class PaymentRequest(BaseModel):
    payment_method_id: str  # Stripe PaymentMethod id from the client-side card element

    @field_validator("payment_method_id")
    @classmethod
    def present(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("payment_method_id is required")
        return v


class StepResponse(BaseModel):
    """Result of a step submission: where the registration stands now."""
    status: str = "ok"
    step: RegistrationStep
    current_step: RegistrationStep
    current_step_index: int
    data: dict[str, Any] = Field(default_factory=dict)


class StepView(BaseModel):
    """Data needed to render one step (including previously submitted values)."""
    step: RegistrationStep
    step_index: int
    current_step: RegistrationStep
    current_step_index: int
    data: dict[str, Any]


class RegistrationStatus(BaseModel):
    has_registration: bool
    current_step: RegistrationStep = RegistrationStep.FORM
    current_step_index: int = 0
    navigable_steps: list[RegistrationStep] = Field(default_factory=lambda: [RegistrationStep.FORM])
    expired: bool = False
    expires_at: datetime | None = None
    registration: dict[str, Any] | None = None
