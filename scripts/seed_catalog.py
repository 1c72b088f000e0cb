"""Standalone script to create DB tables and seed plans and interview questions."""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from onboarding.database import engine, SessionLocal, Base
from onboarding import models  # noqa: F401
from onboarding.seed import seed_catalog

if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_catalog(db)
        print("Catalog seeded: plans basic, pro, enterprise and interview questions.")
    finally:
        db.close()
