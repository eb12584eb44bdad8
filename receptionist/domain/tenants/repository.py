"""Tenant repository - Database operations for tenants, users and agents"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Subscription, SubscriptionPlan, Tenant, TenantUser, VoiceAgent


class TenantRepository:
    """Repository for tenant database operations"""

    @staticmethod
    def get_tenant(db: Session, tenant_id: str) -> Optional[Tenant]:
        return db.query(Tenant).filter(Tenant.id == tenant_id).first()

    @staticmethod
    def slug_exists(db: Session, slug: str) -> bool:
        return db.query(Tenant.id).filter(Tenant.slug == slug).first() is not None

    @staticmethod
    def get_user(db: Session, user_id: str) -> Optional[TenantUser]:
        return db.query(TenantUser).filter(TenantUser.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[TenantUser]:
        """Case-insensitive lookup; emails are stored lower-cased"""
        normalized = (email or "").strip().lower()
        return db.query(TenantUser).filter(func.lower(TenantUser.email) == normalized).first()

    @staticmethod
    def get_plan_by_code(db: Session, code: str) -> Optional[SubscriptionPlan]:
        return db.query(SubscriptionPlan).filter(SubscriptionPlan.code == code).first()

    @staticmethod
    def add_tenant(db: Session, **tenant_data) -> Tenant:
        tenant = Tenant(**tenant_data)
        db.add(tenant)
        db.flush()
        return tenant

    @staticmethod
    def add_user(db: Session, **user_data) -> TenantUser:
        user = TenantUser(**user_data)
        db.add(user)
        db.flush()
        return user

    @staticmethod
    def add_subscription(db: Session, **subscription_data) -> Subscription:
        subscription = Subscription(**subscription_data)
        db.add(subscription)
        db.flush()
        return subscription

    @staticmethod
    def get_agent_by_retell_id(db: Session, retell_agent_id: str) -> Optional[VoiceAgent]:
        return db.query(VoiceAgent).filter(VoiceAgent.retell_agent_id == retell_agent_id).first()

    @staticmethod
    def list_agents(db: Session, tenant_id: str) -> list[VoiceAgent]:
        return (
            db.query(VoiceAgent)
            .filter(VoiceAgent.tenant_id == tenant_id)
            .order_by(VoiceAgent.created_at.desc())
            .all()
        )
