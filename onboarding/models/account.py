"""Tenant account, owner membership and the initial subscription."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from onboarding.database import Base

OWNER_ROLE = "Owner"
MEMBERSHIP_ACTIVE = "active"
SUBSCRIPTION_PENDING_CAPTURE = "pending_capture"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(50), unique=True, index=True, nullable=False)
    billing_email = Column(String(255), nullable=True)
    general_email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # One account per temporary registration; a replayed finalize hits this constraint
    registration_id = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    memberships = relationship("Membership", back_populates="account")
    subscriptions = relationship("Subscription", back_populates="account")


class Membership(Base):
    __tablename__ = "account_memberships"
    __table_args__ = (UniqueConstraint("account_id", "user_id", name="uq_account_memberships_account_user"),)

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(64), nullable=False, default=OWNER_ROLE)
    is_owner = Column(Boolean, default=False, nullable=False)
    status = Column(String(32), nullable=False, default=MEMBERSHIP_ACTIVE)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    account = relationship("Account", back_populates="memberships")
    user = relationship("User", back_populates="memberships")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    # pending_capture until billing captures the authorized payment
    status = Column(String(32), nullable=False, default=SUBSCRIPTION_PENDING_CAPTURE)
    billing_interval = Column(String(16), nullable=False)
    payment_reference = Column(String(255), nullable=True)
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    account = relationship("Account", back_populates="subscriptions")
    plan = relationship("Plan")
