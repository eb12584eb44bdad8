"""Shared FastAPI dependencies"""

from typing import Optional

import httpx
from fastapi import Request

from .domain.context.models import TenantContext, minimal_context
from .domain.tokens import ClientMeta
from .domain.vault import CredentialVault


def get_vault(request: Request) -> CredentialVault:
    """The process-wide vault created at startup"""
    return request.app.state.vault


def get_square_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for Square HTTP calls. None means the default network transport."""
    return None


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_client_meta(request: Request) -> ClientMeta:
    return ClientMeta(user_agent=request.headers.get("user-agent"), ip_address=get_client_ip(request))


def get_tenant_context(request: Request) -> TenantContext:
    """Context attached by the resolver middleware"""
    return getattr(request.state, "tenant", None) or minimal_context()
