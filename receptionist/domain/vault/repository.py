"""Credential repository - Database operations for stored secrets"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import SquareCredential, VoiceAgent


class CredentialRepository:
    @staticmethod
    def get_square_credential(db: Session, tenant_id: str, merchant_id: str) -> Optional[SquareCredential]:
        return (
            db.query(SquareCredential)
            .filter(SquareCredential.tenant_id == tenant_id, SquareCredential.merchant_id == merchant_id)
            .first()
        )

    @staticmethod
    def get_latest_square_credential(
        db: Session, tenant_id: str, agent_id: Optional[str] = None
    ) -> Optional[SquareCredential]:
        """Most recently refreshed credential for a tenant, preferring the agent's own link"""
        query = db.query(SquareCredential).filter(SquareCredential.tenant_id == tenant_id)
        if agent_id:
            linked = (
                query.filter(SquareCredential.agent_id == agent_id)
                .order_by(SquareCredential.last_refreshed_at.desc())
                .first()
            )
            if linked:
                return linked
        return query.order_by(SquareCredential.last_refreshed_at.desc()).first()

    @staticmethod
    def get_agent(db: Session, agent_id: str) -> Optional[VoiceAgent]:
        return db.query(VoiceAgent).filter(VoiceAgent.id == agent_id).first()

    @staticmethod
    def get_agent_by_retell_id(db: Session, retell_agent_id: str) -> Optional[VoiceAgent]:
        return db.query(VoiceAgent).filter(VoiceAgent.retell_agent_id == retell_agent_id).first()
