"""
Delete expired temporary registrations (and consumed ones past their TTL) from the database.
Run: python scripts/purge_expired_registrations.py (from project root)
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from onboarding.database import SessionLocal
from onboarding.models import TemporaryRegistration  # noqa: F401
from onboarding.services.registration_cleanup import purge_expired_registrations


def main():
    db = SessionLocal()
    try:
        deleted = purge_expired_registrations(db)
        print(f"Deleted {deleted} temporary registration(s).")
    finally:
        db.close()


if __name__ == "__main__":
    main()
