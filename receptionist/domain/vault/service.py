"""Credential storage - encrypt-then-persist for Square and agent secrets"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import NotFoundError
from ...models import SquareCredential, VoiceAgent, utcnow
from .cipher import CredentialVault
from .repository import CredentialRepository

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Writes encrypted credentials on the caller's session.

    Nothing here commits: the caller decides the transaction boundary so the
    encryption and the write succeed or fail together.
    """

    def __init__(self, db: Session, vault: CredentialVault):
        self.db = db
        self.vault = vault
        self.repo = CredentialRepository()

    def store_square_credentials(
        self,
        tenant_id: str,
        merchant_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        scopes: Optional[list[str]] = None,
        agent_id: Optional[str] = None,
        default_location_id: Optional[str] = None,
        environment: str = "production",
        supports_seller_level_writes: bool = False,
    ) -> SquareCredential:
        """Upsert on (tenant, merchant)"""
        if not tenant_id or not merchant_id or not access_token:
            raise ValueError("tenant_id, merchant_id and access_token are required")

        encrypted_access = self.vault.encrypt_secret(access_token)
        encrypted_refresh = self.vault.encrypt_secret(refresh_token) if refresh_token else None
        now = utcnow()

        credential = self.repo.get_square_credential(self.db, tenant_id, merchant_id)
        if credential is None:
            credential = SquareCredential(tenant_id=tenant_id, merchant_id=merchant_id)
            self.db.add(credential)
            logger.info(f"🔐 Storing new Square credentials for tenant {tenant_id}, merchant {merchant_id}")
        else:
            logger.info(f"🔄 Updating Square credentials for tenant {tenant_id}, merchant {merchant_id}")

        credential.access_token = encrypted_access
        credential.refresh_token = encrypted_refresh
        credential.token_expires_at = expires_at
        credential.scopes = list(scopes or [])
        credential.environment = environment or "production"
        credential.supports_seller_level_writes = bool(supports_seller_level_writes)
        credential.last_refreshed_at = now
        if agent_id:
            credential.agent_id = agent_id
        if default_location_id:
            credential.default_location_id = default_location_id

        self.db.flush()
        return credential

    def store_agent_bearer_token(self, agent_id: str, token: str) -> VoiceAgent:
        agent = self.repo.get_agent(self.db, agent_id)
        if agent is None:
            raise NotFoundError("Agent not found")
        agent.api_bearer_token = self.vault.encrypt_secret(token)
        self.db.flush()
        logger.info(f"🔐 Stored bearer token for agent {agent.retell_agent_id}")
        return agent
