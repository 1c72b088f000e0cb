"""Shared dependencies: DB session, registration cookie, current user."""
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from onboarding.config import get_settings
from onboarding.database import get_db
from onboarding.models.user import User
from onboarding.services.auth import decode_token_with_error

security = HTTPBearer(auto_error=False)


def get_registration_id(request: Request) -> str | None:
    """Opaque registration reference from the HTTP-only session cookie (never from the URL or body)."""
    value = request.cookies.get(get_settings().registration_cookie_name)
    return (value or "").strip() or None


def audit_context(request: Request) -> dict:
    """Request metadata recorded alongside audit log entries."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": (request.headers.get("user-agent") or "").strip() or None,
    }


def get_current_user(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    token_str = (credentials.credentials or "").strip()
    payload, _ = decode_token_with_error(token_str)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user
