"""Purge temporary registrations that were abandoned past their TTL, and consumed tombstones past theirs."""
import logging
from datetime import timedelta

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from onboarding.config import get_settings
from onboarding.database import SessionLocal
from onboarding.models.registration import TemporaryRegistration, utcnow

log = logging.getLogger("uvicorn.error")


def purge_expired_registrations(db: Session) -> int:
    """Delete expired unfinished registrations and consumed ones older than one TTL. Returns rows deleted."""
    now = utcnow()
    consumed_before = now - timedelta(days=get_settings().registration_ttl_days)
    deleted = (
        db.query(TemporaryRegistration)
        .filter(
            or_(
                and_(TemporaryRegistration.consumed_at.is_(None), TemporaryRegistration.expires_at < now),
                TemporaryRegistration.consumed_at < consumed_before,
            )
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def run_registration_cleanup_job() -> None:
    db: Session = SessionLocal()
    try:
        deleted = purge_expired_registrations(db)
        if deleted:
            log.info("Registration cleanup: deleted %d expired temporary registration(s).", deleted)
    finally:
        db.close()
