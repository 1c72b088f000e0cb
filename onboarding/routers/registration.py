"""Registration wizard endpoints.

The client never names its registration: every endpoint resolves it from the HTTP-only cookie
and the server decides which step is current.
"""
import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from onboarding.config import get_settings
from onboarding.database import get_db
from onboarding.dependencies import audit_context, get_registration_id
from onboarding.errors import AlreadyFinalized
from onboarding.models.registration import RegistrationStep
from onboarding.routers.auth import user_to_response
from onboarding.schemas.auth import AccountSummary, FinalizeResponse
from onboarding.schemas.registration import (
    AccountSetupRequest,
    InterviewRequest,
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    PaymentRequest,
    PlanRequest,
    RegisterRequest,
    RegistrationStatus,
    SlugCheckRequest,
    SlugCheckResponse,
    StepResponse,
    StepView,
)
from onboarding.services import registration as registration_service
from onboarding.services.auth import create_access_token
from onboarding.services.finalizer import finalize_registration, load_finalized
from onboarding.services.notifications import send_welcome_email
from onboarding.services.otp import issue_challenge, verify_challenge

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/auth", tags=["registration"])


def _set_registration_cookie(response: Response, registration_id: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.registration_cookie_name,
        value=registration_id,
        httponly=True,
        secure=settings.registration_cookie_secure,
        samesite="lax",
        max_age=settings.registration_ttl_days * 24 * 60 * 60,
        path="/",
    )


def _clear_registration_cookie(response: Response) -> None:
    response.delete_cookie(get_settings().registration_cookie_name, path="/")


def _step_response(reg, step: RegistrationStep, data: dict | None = None) -> StepResponse:
    return StepResponse(
        step=step,
        current_step=reg.current_step,
        current_step_index=reg.step_index,
        data=data or {},
    )


@router.get("/registration/status", response_model=RegistrationStatus)
def registration_status(
    response: Response,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    """What step am I on? Clients call this on every load and never trust a cached step."""
    status = registration_service.registration_status(db, registration_id)
    if registration_id and not status["has_registration"]:
        _clear_registration_cookie(response)
    return RegistrationStatus(**status)


@router.get("/registration/step/{step}", response_model=StepView)
def get_step(
    step: RegistrationStep,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    """Render data for a step at or behind the current one; later steps fail with STEP_NOT_REACHED."""
    reg, data = registration_service.request_step(db, registration_id, step)
    return StepView(
        step=step,
        step_index=step.index,
        current_step=reg.current_step,
        current_step_index=reg.step_index,
        data=data,
    )


@router.post("/register", response_model=StepResponse)
def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    reg = registration_service.submit_form(db, registration_id, data, audit=audit_context(request))
    _set_registration_cookie(response, reg.id)
    return _step_response(reg, RegistrationStep.FORM, {"email": reg.email, "first_name": reg.first_name, "last_name": reg.last_name})


@router.post("/otp/send", response_model=OtpSendResponse, response_model_exclude_none=True)
def send_otp(
    data: OtpSendRequest,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    issued = issue_challenge(db, registration_id, data.method)
    return OtpSendResponse(
        method=issued.method,
        expires_at=issued.expires_at,
        resend_available_at=issued.resend_available_at,
        attempts_remaining=issued.attempts_remaining,
        code=issued.code,
    )


@router.post("/otp/verify", response_model=StepResponse)
def verify_otp(
    data: OtpVerifyRequest,
    request: Request,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    reg = verify_challenge(db, registration_id, data.code, audit=audit_context(request))
    return _step_response(reg, RegistrationStep.VERIFY, {
        "email_verified": reg.email_verified_at is not None,
        "phone_verified": reg.phone_verified_at is not None,
    })


@router.post("/account/check-slug", response_model=SlugCheckResponse)
def check_slug(
    data: SlugCheckRequest,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    available, reason = registration_service.check_slug(db, data.slug, registration_id)
    return SlugCheckResponse(slug=data.slug, available=available, reason=reason)


@router.post("/account/create", response_model=StepResponse)
def create_account_draft(
    data: AccountSetupRequest,
    request: Request,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    reg = registration_service.submit_account_setup(db, registration_id, data.name, data.slug, audit=audit_context(request))
    return _step_response(reg, RegistrationStep.ACCOUNT_SETUP, {"name": reg.account_name, "slug": reg.account_slug})


@router.post("/registration/interview", response_model=StepResponse)
def save_interview(
    data: InterviewRequest,
    request: Request,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    reg, missing = registration_service.save_interview(
        db, registration_id, data.answers, data.is_complete, audit=audit_context(request)
    )
    return _step_response(reg, RegistrationStep.INTERVIEW, {"missing": missing})


@router.post("/registration/plan", response_model=StepResponse)
def select_plan(
    data: PlanRequest,
    request: Request,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    reg, plan = registration_service.submit_plan(db, registration_id, data.plan_id, audit=audit_context(request))
    return _step_response(reg, RegistrationStep.PLAN, {
        "plan": {"id": plan.slug, "name": plan.name, "price_cents": plan.price_cents, "currency": plan.currency},
    })


@router.post("/registration/payment", response_model=StepResponse)
def submit_payment(
    data: PaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    reg = registration_service.submit_payment(db, registration_id, data.payment_method_id, audit=audit_context(request))
    return _step_response(reg, RegistrationStep.PAYMENT, {"payment_authorized": True, "can_finalize": True})


@router.post("/registration/finalize", response_model=FinalizeResponse)
def finalize(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    """Create the user, account, owner membership and subscription. Replays report already_finalized."""
    try:
        result = finalize_registration(db, registration_id, audit=audit_context(request))
    except AlreadyFinalized as replay:
        result = load_finalized(db, replay)
    else:
        if not send_welcome_email(result.user.email, result.user.first_name, result.account.name):
            log.info("[Registration] Welcome email not sent to %s", result.user.email)
    _clear_registration_cookie(response)
    token = create_access_token(result.user.id, result.user.email, result.account.id)
    return FinalizeResponse(
        access_token=token,
        user=user_to_response(result.user, db),
        account=AccountSummary(id=result.account.id, name=result.account.name, slug=result.account.slug, is_owner=True),
        subscription_id=result.subscription.id if result.subscription else None,
        already_finalized=result.already_finalized,
    )


@router.post("/registration/cancel")
def cancel(
    response: Response,
    db: Session = Depends(get_db),
    registration_id: str | None = Depends(get_registration_id),
):
    """Abandon the registration in progress and forget the session cookie."""
    cancelled = registration_service.cancel_registration(db, registration_id)
    _clear_registration_cookie(response)
    return {"status": "ok", "cancelled": cancelled}
