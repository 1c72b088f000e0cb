"""One-time passcode challenges for the VERIFY step.

A registration holds at most one live challenge. Codes are stored as bcrypt hashes, expire
after OTP_EXPIRE_MINUTES, allow OTP_MAX_ATTEMPTS wrong guesses and can be re-sent only after
OTP_RESEND_COOLDOWN_SECONDS. The attempt counter is decremented on the same locked, versioned
row the comparison reads, so parallel guesses cannot both slip past it.
"""
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from onboarding.config import get_settings
from onboarding.errors import (
    AttemptsExhausted,
    DeliveryFailed,
    InvalidCode,
    NoActiveChallenge,
    OtpExpired,
    RateLimited,
    StepNotReached,
    ValidationFailed,
)
from onboarding.models.registration import OtpMethod, RegistrationStep, TemporaryRegistration, as_utc, utcnow
from onboarding.services import notifications
from onboarding.services.audit_log import create_log, CATEGORY_FAILED_ATTEMPT
from onboarding.services.auth import hash_code, verify_code
from onboarding.services.registration import advance, commit, load_registration

log = logging.getLogger("uvicorn.error")


@dataclass
class IssuedChallenge:
    method: OtpMethod
    expires_at: datetime
    resend_available_at: datetime
    attempts_remaining: int
    code: str | None = None  # populated only when OTP echo is enabled


def generate_code(length: int) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def _require_verify_step(reg: TemporaryRegistration) -> None:
    if reg.current_step.index < RegistrationStep.VERIFY.index:
        raise StepNotReached(reg.current_step, RegistrationStep.VERIFY)
    if reg.current_step != RegistrationStep.VERIFY:
        raise ValidationFailed("Contact details are already verified.")


def issue_challenge(db: Session, registration_id: str | None, method: OtpMethod) -> IssuedChallenge:
    """Issue a fresh code and send it over `method`, replacing any earlier challenge."""
    settings = get_settings()
    reg = load_registration(db, registration_id)
    _require_verify_step(reg)

    destination = reg.email if method == OtpMethod.EMAIL else reg.phone_number
    if not destination:
        raise ValidationFailed("Add a phone number to receive the code by SMS.", {"field": "phone_number"})

    now = utcnow()
    # The cooldown outlives the code itself: a revoked or exhausted code still gates the next send
    available_at = as_utc(reg.otp_resend_available_at)
    if available_at and now < available_at:
        raise RateLimited(max(1, math.ceil((available_at - now).total_seconds())))

    code = generate_code(settings.otp_length)
    reg.otp_method = method
    reg.otp_code_hash = hash_code(code)
    reg.otp_expires_at = now + timedelta(minutes=settings.otp_expire_minutes)
    reg.otp_attempts_remaining = settings.otp_max_attempts
    reg.otp_resend_available_at = now + timedelta(seconds=settings.otp_resend_cooldown_seconds)
    issued = IssuedChallenge(
        method=method,
        expires_at=reg.otp_expires_at,
        resend_available_at=reg.otp_resend_available_at,
        attempts_remaining=reg.otp_attempts_remaining,
        code=code if settings.otp_echo_enabled else None,
    )
    # Claim the row before dispatching so a parallel send for the same registration loses the race
    # instead of mailing a second code.
    db.flush()

    sent = notifications.send_verification_code(method, destination, code)
    if not sent:
        db.rollback()
        log.warning("[OTP] Delivery via %s failed for registration %s", method.value, reg.id[:8])
        raise DeliveryFailed()
    commit(db)
    if settings.otp_echo_enabled:
        log.info("[OTP] (echo enabled) code for %s via %s: %s", destination, method.value, code)
    else:
        log.info("[OTP] Code sent via %s for registration %s", method.value, reg.id[:8])
    return issued


def verify_challenge(
    db: Session, registration_id: str | None, submitted_code: str, *, audit: dict | None = None
) -> TemporaryRegistration:
    """Check a submitted code. Success clears the challenge and moves VERIFY -> ACCOUNT_SETUP."""
    reg = load_registration(db, registration_id)
    if not reg.has_active_challenge:
        raise NoActiveChallenge()
    now = utcnow()
    if now > as_utc(reg.otp_expires_at):
        raise OtpExpired()
    if (reg.otp_attempts_remaining or 0) <= 0:
        raise AttemptsExhausted()

    if not verify_code(submitted_code, reg.otp_code_hash):
        reg.otp_attempts_remaining = reg.otp_attempts_remaining - 1
        remaining = reg.otp_attempts_remaining
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Verification code rejected",
            f"Wrong verification code for registration; {remaining} attempt(s) remaining.",
            registration_id=reg.id,
            actor_email=reg.email,
            meta={"method": reg.otp_method, "attempts_remaining": remaining},
            **(audit or {}),
        )
        commit(db)
        raise InvalidCode(remaining)

    if reg.otp_method == OtpMethod.SMS:
        reg.phone_verified_at = now
    else:
        reg.email_verified_at = now
    reg.clear_challenge()
    advance(db, reg, RegistrationStep.VERIFY, audit=audit)
    commit(db)
    db.refresh(reg)
    return reg
