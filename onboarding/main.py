"""Tenant onboarding - FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from onboarding.config import get_settings
from onboarding.database import Base, engine, SessionLocal
from onboarding.errors import add_exception_handlers
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from onboarding.models import (  # noqa: F401
    User, Account, Membership, Subscription, Plan, InterviewQuestion, TemporaryRegistration, AuditLog,
)
from onboarding.routers import auth, catalog, registration
from onboarding.services.notifications import mailgun_configured

log = logging.getLogger("uvicorn.error")

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(registration.router)
app.include_router(auth.router)
app.include_router(catalog.router)


@app.on_event("startup")
def startup():
    if mailgun_configured():
        log.info("[Mailgun] App using domain=%s (verification codes and welcome emails use this)", settings.mailgun_domain)
    else:
        log.warning("[Mailgun] Not configured - email verification codes cannot be sent; set MAILGUN_API_KEY and MAILGUN_DOMAIN in .env")
    if settings.otp_echo_enabled:
        log.warning("[OTP] OTP_ECHO_ENABLED is on: verification codes are returned to the client. Development only.")
    try:
        Base.metadata.create_all(bind=engine)
        from onboarding.seed import seed_catalog
        db = SessionLocal()
        try:
            seed_catalog(db)
        finally:
            db.close()
    except SQLAlchemyError as e:
        log.warning("Database startup failed (tables/seed skipped). Check DATABASE_URL and network. Error: %s", e)

    if settings.registration_cleanup_enabled:
        from apscheduler.schedulers.background import BackgroundScheduler
        from onboarding.services.registration_cleanup import run_registration_cleanup_job

        scheduler = BackgroundScheduler()
        scheduler.add_job(run_registration_cleanup_job, "interval", hours=1)
        scheduler.start()
        app.state.scheduler = scheduler


@app.on_event("shutdown")
def shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
