"""
Tenant context resolution

Every request gets a TenantContext on request.state.tenant, chosen in order:
agent credentials, dashboard access token, environment fallback. Resolution
failures never fail the request; a secret-free context is attached instead.
"""

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ... import config, database
from ...errors import AppError, AuthenticationError, NotFoundError
from ...security_utils import constant_time_compare, log_security_event
from ..tenants import TenantDirectory
from ..tokens import TokenIssuer
from ..vault import CredentialVault
from .models import ContextSource, TenantContext, minimal_context

logger = logging.getLogger(__name__)

AGENT_ID_HEADER = "x-agent-id"


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def build_env_context() -> Optional[TenantContext]:
    """Single-tenant context from SQUARE_* environment variables"""
    if not config.SQUARE_ACCESS_TOKEN:
        return None
    return TenantContext(
        source=ContextSource.ENV_FALLBACK,
        id="default",
        slug="default",
        business_name=config.BUSINESS_NAME,
        timezone=config.DEFAULT_TIMEZONE,
        status="active",
        default_location_id=config.SQUARE_LOCATION_ID,
        square_access_token=config.SQUARE_ACCESS_TOKEN,
        square_location_id=config.SQUARE_LOCATION_ID,
        square_environment=config.SQUARE_ENVIRONMENT,
    )


def resolve_tenant_context(
    db: Session,
    vault: CredentialVault,
    agent_context: Optional[TenantContext] = None,
    access_token: Optional[str] = None,
) -> TenantContext:
    if agent_context is not None:
        return agent_context

    if access_token:
        try:
            claims = TokenIssuer().verify_access_token(access_token)
        except AuthenticationError as e:
            # A rejected token is still a dashboard caller, never an env-fallback one
            logger.info(f"🔒 Dashboard token rejected during context resolution: {e.message}")
            return minimal_context()
        try:
            return TenantDirectory(db, vault).get_tenant_context(claims.get("tenantId"))
        except NotFoundError:
            logger.warning(f"⚠️ Token references unknown tenant {claims.get('tenantId')}")
            return minimal_context()

    if config.ALLOW_ENV_TENANT_FALLBACK:
        env_context = build_env_context()
        if env_context is not None:
            log_security_event("env_tenant_fallback_used", details={"business_name": config.BUSINESS_NAME})
            return env_context

    return minimal_context()


async def tenant_context_middleware(request: Request, call_next):
    """Attach request.state.tenant for every request"""
    try:
        db = database.SessionLocal()
        try:
            request.state.tenant = resolve_tenant_context(
                db,
                request.app.state.vault,
                agent_context=getattr(request.state, "agent_context", None),
                access_token=None if request.headers.get(AGENT_ID_HEADER) else _bearer_token(request),
            )
        finally:
            db.close()
    except Exception as e:
        logger.error(f"❌ Tenant context resolution failed for {request.url.path}: {type(e).__name__}: {e}")
        request.state.tenant = minimal_context()

    return await call_next(request)


def _agent_auth_failure(message: str = "Invalid agent credentials", status_code: int = 401) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": "authentication_failed", "message": message},
    )


async def agent_auth_middleware(request: Request, call_next):
    """
    Authenticate voice-agent calls carrying x-agent-id and a bearer token.

    Requests without x-agent-id pass through untouched.
    """
    agent_id = request.headers.get(AGENT_ID_HEADER)
    if not agent_id:
        return await call_next(request)

    presented = _bearer_token(request)
    if not presented:
        logger.warning(f"⚠️ Agent {agent_id} call without bearer token on {request.url.path}")
        return _agent_auth_failure()

    try:
        db = database.SessionLocal()
        try:
            context = TenantDirectory(db, request.app.state.vault).get_agent_context_by_retell_id(agent_id)
        finally:
            db.close()
    except AppError as e:
        logger.error(f"❌ Agent authentication unavailable: {e.message}")
        return _agent_auth_failure("Agent authentication unavailable", status_code=e.status_code)

    if context is None or not constant_time_compare(presented, context.agent_bearer_token):
        log_security_event(
            "agent_auth_failed",
            ip_address=request.client.host if request.client else None,
            details={"agent_id": agent_id, "known_agent": context is not None},
        )
        return _agent_auth_failure()

    request.state.agent_context = context
    return await call_next(request)
