"""Notification service: Mailgun email and Twilio SMS for passcodes and welcome messages."""
import logging

import httpx

from onboarding.config import get_settings
from onboarding.models.registration import OtpMethod

log = logging.getLogger("uvicorn.error")

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"


def mailgun_configured() -> bool:
    s = get_settings()
    return bool(s.mailgun_api_key and s.mailgun_domain)


def twilio_configured() -> bool:
    s = get_settings()
    return bool(s.twilio_account_sid and s.twilio_auth_token and s.twilio_from_phone_number)


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun. Returns True if the API accepted it."""
    settings = get_settings()
    if not mailgun_configured():
        log.warning(
            "[Email] NOT SENT: to=%s subject=%s. Set MAILGUN_API_KEY and MAILGUN_DOMAIN in .env and restart.",
            to_email, subject,
        )
        return False

    base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
    domain = settings.mailgun_domain.strip().lower()
    from_addr = settings.mailgun_from_email.strip()
    from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
    if from_domain != domain:
        # Mailgun drops mail whose sender domain does not match the sending domain
        from_addr = f"noreply@{domain}"
    data = {
        "from": f"{settings.mailgun_from_name} <{from_addr}>",
        "to": to_email,
        "subject": subject,
        "text": text_content or "",
        "html": html_content or "",
    }
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
            if 200 <= r.status_code < 300:
                log.info("[Mailgun] API success: to=%s status=%s", to_email, r.status_code)
                return True
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                log.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                r2 = client.post(
                    f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data
                )
                if 200 <= r2.status_code < 300:
                    log.info("[Mailgun] API success (EU): to=%s", to_email)
                    return True
                log.warning("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            log.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
    except httpx.HTTPError as e:
        log.warning("[Mailgun] Request error: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def send_sms(to_phone: str, body: str) -> bool:
    """SMS via Twilio. Returns True if Twilio accepted the message."""
    if not twilio_configured():
        log.warning("[SMS] NOT SENT: to=%s. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_PHONE_NUMBER.", to_phone)
        return False
    from twilio.base.exceptions import TwilioException
    from twilio.rest import Client

    settings = get_settings()
    try:
        client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        client.messages.create(body=body, from_=settings.twilio_from_phone_number, to=to_phone)
        return True
    except TwilioException as e:
        log.warning("[SMS] Twilio error: to=%s error=%s", to_phone, e)
        return False


def send_verification_code(method: OtpMethod, destination: str, code: str) -> bool:
    """Deliver a signup passcode over the chosen channel."""
    settings = get_settings()
    minutes = settings.otp_expire_minutes
    if method == OtpMethod.SMS:
        return send_sms(destination, f"Your {settings.app_name} verification code is {code}. It expires in {minutes} minutes.")
    subject = f"[{settings.app_name}] Your verification code"
    text_content = f"Your {settings.app_name} verification code is: {code}. It expires in {minutes} minutes."
    html_content = f"""
    <p>Hello,</p>
    <p>Your {settings.app_name} verification code is: <strong style="font-size:1.2em;letter-spacing:0.2em;">{code}</strong></p>
    <p>This code expires in {minutes} minutes. If you did not request this, you can ignore this email.</p>
    <p>- {settings.app_name}</p>
    """
    return send_email(destination, subject, html_content, text_content=text_content)


def send_welcome_email(to_email: str, first_name: str | None, account_name: str) -> bool:
    """Send welcome email once the account has been provisioned."""
    settings = get_settings()
    name = (first_name or "").strip() or "there"
    subject = f"[{settings.app_name}] Welcome - {account_name} is ready"
    text = f"Hi {name}, welcome to {settings.app_name}. Your workspace {account_name} is ready and you can sign in now."
    html = f"""
    <p>Hi {name},</p>
    <p>Welcome to <strong>{settings.app_name}</strong>. Your workspace <strong>{account_name}</strong> is ready.</p>
    <p>You can now sign in and start setting up your sites.</p>
    <p>- {settings.app_name}</p>
    """
    return send_email(to_email, subject, html, text_content=text)
