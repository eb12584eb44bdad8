"""Tenant context attached to every request"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ... import config


class ContextSource(str, Enum):
    AGENT_AUTH = "agent_auth"
    DASHBOARD_AUTH = "dashboard_auth"
    ENV_FALLBACK = "env_fallback"
    FALLBACK = "fallback"


@dataclass
class TenantContext:
    """
    Everything downstream handlers need to act for one tenant.

    Secret fields are excluded from repr() and from public_view(); handlers
    must never persist or log them.
    """

    source: ContextSource
    id: Optional[str] = None
    slug: Optional[str] = None
    business_name: Optional[str] = None
    timezone: Optional[str] = None
    status: Optional[str] = None
    qa_status: Optional[str] = None
    trial_ends_at: Optional[Any] = None
    default_location_id: Optional[str] = None
    square_merchant_id: Optional[str] = None
    square_location_id: Optional[str] = None
    square_environment: Optional[str] = None
    square_token_expires_at: Optional[Any] = None
    square_scopes: list[str] = field(default_factory=list)
    supports_seller_level_writes: bool = False
    agent_id: Optional[str] = None
    retell_agent_id: Optional[str] = None
    square_access_token: Optional[str] = field(default=None, repr=False)
    square_refresh_token: Optional[str] = field(default=None, repr=False)
    agent_bearer_token: Optional[str] = field(default=None, repr=False)

    @property
    def square_connected(self) -> bool:
        return bool(self.square_access_token)

    def public_view(self) -> dict:
        trial_ends_at = self.trial_ends_at.isoformat() if hasattr(self.trial_ends_at, "isoformat") else self.trial_ends_at
        expires_at = (
            self.square_token_expires_at.isoformat()
            if hasattr(self.square_token_expires_at, "isoformat")
            else self.square_token_expires_at
        )
        return {
            "source": self.source.value,
            "id": self.id,
            "slug": self.slug,
            "businessName": self.business_name,
            "timezone": self.timezone,
            "status": self.status,
            "qaStatus": self.qa_status,
            "trialEndsAt": trial_ends_at,
            "defaultLocationId": self.default_location_id,
            "squareConnected": self.square_connected,
            "squareMerchantId": self.square_merchant_id,
            "squareLocationId": self.square_location_id,
            "squareEnvironment": self.square_environment,
            "squareTokenExpiresAt": expires_at,
            "squareScopes": list(self.square_scopes),
            "supportsSellerLevelWrites": self.supports_seller_level_writes,
            "agentId": self.retell_agent_id,
        }


def minimal_context(business_name: Optional[str] = None, timezone: Optional[str] = None) -> TenantContext:
    """Secret-free context used when resolution fails"""
    return TenantContext(
        source=ContextSource.FALLBACK,
        business_name=business_name or config.BUSINESS_NAME,
        timezone=timezone or config.DEFAULT_TIMEZONE,
    )
