"""Payment authorization via Stripe. Only authorize/decline is modelled; capture happens in billing."""
import logging
from dataclasses import dataclass

import stripe

from onboarding.config import get_settings
from onboarding.errors import ServiceUnavailable
from onboarding.models.catalog import Plan

log = logging.getLogger("uvicorn.error")


@dataclass
class PaymentAuthorization:
    approved: bool
    reference: str | None = None
    decline_reason: str | None = None


def stripe_configured() -> bool:
    return bool(get_settings().stripe_secret_key)


def authorize_payment(
    plan: Plan,
    payment_method_id: str,
    *,
    email: str,
    registration_id: str,
    attempt: int,
) -> PaymentAuthorization:
    """Place a manual-capture PaymentIntent for the plan's first period.

    Card declines come back as PaymentAuthorization(approved=False); anything else Stripe
    raises is an infrastructure failure and surfaces as ServiceUnavailable.
    """
    if not stripe_configured():
        raise ServiceUnavailable("Payments are not configured. Set STRIPE_SECRET_KEY in .env.")
    stripe.api_key = get_settings().stripe_secret_key
    try:
        intent = stripe.PaymentIntent.create(
            amount=plan.price_cents,
            currency=(plan.currency or "USD").lower(),
            payment_method=payment_method_id,
            capture_method="manual",
            confirm=True,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            receipt_email=email,
            metadata={"registration_id": registration_id, "plan": plan.slug},
            # One intent per attempt: a network retry of the same attempt cannot double-authorize
            idempotency_key=f"registration_{registration_id}_payment_{attempt}",
        )
    except stripe.CardError as e:
        reason = getattr(e, "user_message", None) or str(e)
        log.info("[Stripe] Card declined for registration=%s: %s", registration_id, reason)
        return PaymentAuthorization(approved=False, decline_reason=reason)
    except stripe.StripeError as e:
        log.warning("[Stripe] Error authorizing registration=%s: %s", registration_id, e)
        raise ServiceUnavailable("Payment provider unavailable. Please try again.")

    if intent.status != "requires_capture":
        log.info("[Stripe] PaymentIntent %s ended in status=%s", intent.id, intent.status)
        return PaymentAuthorization(approved=False, reference=intent.id, decline_reason="Payment could not be authorized.")
    return PaymentAuthorization(approved=True, reference=intent.id)
