"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from onboarding.models.user import User
from onboarding.models.account import Account, Membership, Subscription
from onboarding.models.catalog import Plan, InterviewQuestion
from onboarding.models.registration import TemporaryRegistration, RegistrationStep, OtpMethod
from onboarding.models.audit_log import AuditLog

__all__ = [
    "User",
    "Account",
    "Membership",
    "Subscription",
    "Plan",
    "InterviewQuestion",
    "TemporaryRegistration",
    "RegistrationStep",
    "OtpMethod",
    "AuditLog",
]
