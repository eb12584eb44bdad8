"""Session repository - Database operations for refresh-token sessions"""

from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...models import Tenant, TenantUser, TenantUserSession


class SessionRepository:
    @staticmethod
    def get_session(db: Session, session_id: str) -> Optional[TenantUserSession]:
        if not session_id:
            return None
        return db.query(TenantUserSession).filter(TenantUserSession.id == session_id).first()

    @staticmethod
    def get_user(db: Session, user_id: str) -> Optional[TenantUser]:
        return db.query(TenantUser).filter(TenantUser.id == user_id).first()

    @staticmethod
    def get_tenant(db: Session, tenant_id: str) -> Optional[Tenant]:
        return db.query(Tenant).filter(Tenant.id == tenant_id).first()

    @staticmethod
    def claim_session(db: Session, session_id: str, now: datetime) -> bool:
        """
        Revoke a session only if it is still usable.

        Returns False when another request already consumed or revoked it.
        """
        result = db.execute(
            update(TenantUserSession)
            .where(
                TenantUserSession.id == session_id,
                TenantUserSession.revoked_at.is_(None),
                TenantUserSession.expires_at > now,
            )
            .values(revoked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def revoke_session(db: Session, session_id: str, now: datetime) -> int:
        result = db.execute(
            update(TenantUserSession)
            .where(TenantUserSession.id == session_id, TenantUserSession.revoked_at.is_(None))
            .values(revoked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def revoke_user_sessions(db: Session, user_id: str, now: datetime) -> int:
        result = db.execute(
            update(TenantUserSession)
            .where(TenantUserSession.tenant_user_id == user_id, TenantUserSession.revoked_at.is_(None))
            .values(revoked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
