"""
Tenant, identity and credential models
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Session, relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_id)
    slug = Column(String(80), unique=True, index=True, nullable=False)
    business_name = Column(String(255), nullable=False)
    industry = Column(String(100), nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, active, suspended
    timezone = Column(String(64), default="America/New_York", nullable=False)
    default_location_id = Column(String(64), nullable=True)
    qa_status = Column(String(32), default="not_started", nullable=False)
    trial_ends_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    users = relationship("TenantUser", back_populates="tenant")
    agents = relationship("VoiceAgent", back_populates="tenant")


class TenantUser(Base):
    __tablename__ = "tenant_users"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)  # Always lower-cased
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="owner", nullable=False)  # owner, admin, staff, qa
    display_name = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="users")


class TenantUserSession(Base):
    """One row per issued refresh token. Rows are revoked, never deleted."""

    __tablename__ = "tenant_user_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_user_id = Column(String(36), ForeignKey("tenant_users.id"), index=True, nullable=False)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    refresh_token_hash = Column(String(255), nullable=False)  # salt$digest
    user_agent = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class VoiceAgent(Base):
    """Voice agent (Retell) that calls into the API on behalf of a tenant"""

    __tablename__ = "retell_agents"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    retell_agent_id = Column(String(128), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=True)
    status = Column(String(20), default="active", nullable=False)
    api_bearer_token = Column(Text, nullable=True)  # Encrypted
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="agents")


class SquareCredential(Base):
    """Square OAuth tokens and seller metadata, one row per (tenant, merchant)"""

    __tablename__ = "square_credentials"
    __table_args__ = (UniqueConstraint("tenant_id", "merchant_id", name="uq_square_credentials_tenant_merchant"),)

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    agent_id = Column(String(36), ForeignKey("retell_agents.id"), nullable=True)
    merchant_id = Column(String(64), nullable=False)
    default_location_id = Column(String(64), nullable=True)
    environment = Column(String(20), default="production", nullable=False)
    supports_seller_level_writes = Column(Boolean, default=False, nullable=False)
    access_token = Column(Text, nullable=False)  # Encrypted
    refresh_token = Column(Text, nullable=True)  # Encrypted
    token_expires_at = Column(DateTime, nullable=True)
    scopes = Column(JSON, default=list, nullable=True)
    last_refreshed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(32), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    monthly_price_cents = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), index=True, nullable=False)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False)
    status = Column(String(20), default="trialing", nullable=False)
    trial_ends_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    plan = relationship("SubscriptionPlan")


DEFAULT_PLANS = (
    ("basic", "Basic", 0),
    ("mid", "Mid", 4900),
    ("premium", "Premium", 9900),
)


def seed_subscription_plans(db: Session) -> int:
    """Insert the default plans that are missing. Returns how many were added."""
    existing = {code for (code,) in db.query(SubscriptionPlan.code).all()}
    added = 0
    for code, name, price in DEFAULT_PLANS:
        if code not in existing:
            db.add(SubscriptionPlan(code=code, name=name, monthly_price_cents=price))
            added += 1
    if added:
        db.commit()
    return added
