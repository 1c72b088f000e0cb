"""Registration workflow errors and the FastAPI handlers that render them."""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from onboarding.config import get_settings

log = logging.getLogger("uvicorn.error")


class RegistrationError(Exception):
    """Base error for the registration workflow. `code` is stable for clients; `details` is optional extra data."""

    code = "REGISTRATION_ERROR"
    status_code = 400
    default_message = "Registration request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationFailed(RegistrationError):
    code = "VALIDATION_FAILED"
    status_code = 422
    default_message = "Input validation failed"


class StepNotReached(RegistrationError):
    """Caller tried to skip ahead; details.current_step is where the client must go."""
    code = "STEP_NOT_REACHED"
    status_code = 409
    default_message = "This step is not available yet"

    def __init__(self, current_step, requested_step=None):
        details = {"current_step": current_step.value, "current_step_index": current_step.index}
        if requested_step is not None:
            details["requested_step"] = requested_step.value
        super().__init__(f"Complete the {current_step.value} step first.", details)
        self.current_step = current_step


class SlugTaken(RegistrationError):
    code = "SLUG_TAKEN"
    status_code = 409
    default_message = "This slug is already taken"


class EmailTaken(RegistrationError):
    code = "EMAIL_TAKEN"
    status_code = 409
    default_message = "A user with this email already exists"


class RateLimited(RegistrationError):
    code = "RATE_LIMITED"
    status_code = 429
    default_message = "Please wait before requesting a new code"

    def __init__(self, retry_after: int):
        super().__init__(
            f"Please wait {retry_after} seconds before requesting a new code.",
            {"retry_after": retry_after},
        )
        self.retry_after = retry_after


class OtpExpired(RegistrationError):
    code = "OTP_EXPIRED"
    status_code = 400
    default_message = "Verification code has expired. Please request a new one."


class AttemptsExhausted(RegistrationError):
    code = "ATTEMPTS_EXHAUSTED"
    status_code = 429
    default_message = "Too many failed attempts. Please request a new code."


class InvalidCode(RegistrationError):
    code = "INVALID_CODE"
    status_code = 400
    default_message = "Invalid code"

    def __init__(self, attempts_remaining: int):
        super().__init__(self.default_message, {"attempts_remaining": attempts_remaining})
        self.attempts_remaining = attempts_remaining


class NoActiveChallenge(RegistrationError):
    code = "NO_ACTIVE_CHALLENGE"
    status_code = 400
    default_message = "No active verification code. Please request a new one."


class RegistrationExpired(RegistrationError):
    code = "REGISTRATION_EXPIRED"
    status_code = 410
    default_message = "Registration expired. Please start over."


class RegistrationNotFound(RegistrationError):
    code = "REGISTRATION_NOT_FOUND"
    status_code = 404
    default_message = "Registration not found. Please start over."


class NotReady(RegistrationError):
    code = "NOT_READY"
    status_code = 409
    default_message = "Registration is not ready to be finalized"

    def __init__(self, missing: list[str]):
        super().__init__(
            f"Registration is not ready to be finalized: {', '.join(missing)} required.",
            {"missing": missing},
        )
        self.missing = missing


class AlreadyFinalized(RegistrationError):
    """Replay of a successful finalize. Only the finalize route turns it into a success response."""
    code = "ALREADY_FINALIZED"
    status_code = 409
    default_message = "Registration was already completed"

    def __init__(self, user_id: int, account_id: int):
        super().__init__(self.default_message, {"user_id": user_id, "account_id": account_id})
        self.user_id = user_id
        self.account_id = account_id


class PaymentDeclined(RegistrationError):
    code = "PAYMENT_DECLINED"
    status_code = 402
    default_message = "Payment was declined"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or self.default_message, {"reason": reason or self.default_message})
        self.reason = reason or self.default_message


class ConcurrentModification(RegistrationError):
    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    default_message = "This registration was updated by another request. Please retry."


class DeliveryFailed(RegistrationError):
    code = "DELIVERY_FAILED"
    status_code = 503
    default_message = "We could not send the verification code. Please try again."


class ServiceUnavailable(RegistrationError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    default_message = "Service temporarily unavailable. Please try again."


def _error_body(message: str, code: str, details: Any = None) -> dict:
    return {"detail": message, "code": code, "details": details}


def add_exception_handlers(app: FastAPI) -> None:
    """Registers exception handlers with the FastAPI app."""

    @app.exception_handler(RegistrationError)
    async def registration_error_handler(request: Request, exc: RegistrationError):
        response = JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, exc.code, exc.details),
        )
        if isinstance(exc, (RegistrationExpired, RegistrationNotFound)):
            response.delete_cookie(get_settings().registration_cookie_name, path="/")
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [{k: v for k, v in e.items() if k in ("loc", "msg", "type")} for e in exc.errors()]
        return JSONResponse(
            status_code=422,
            content=_error_body("Input validation failed", ValidationFailed.code, errors),
        )

    @app.exception_handler(OperationalError)
    async def storage_unavailable_handler(request: Request, exc: OperationalError):
        log.warning("[Database] Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content=_error_body(ServiceUnavailable.default_message, ServiceUnavailable.code),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        log.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
        message = "An internal error occurred. Please try again later." if get_settings().is_production else str(exc)
        return JSONResponse(status_code=500, content=_error_body(message, "INTERNAL_ERROR"))
