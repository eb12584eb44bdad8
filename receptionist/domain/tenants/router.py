"""Auth router - signup, login, refresh rotation, logout and profile endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ... import config
from ...auth import get_current_user, get_token_claims, require_roles
from ...database import get_db
from ...deps import get_client_meta, get_vault
from ...errors import AuthenticationError, ValidationError
from ...models import TenantUser
from ...rate_limiter import create_rate_limiter
from ..tokens import AuthResult, ClientMeta, TokenIssuer
from ..vault import CredentialVault
from .schemas import AgentRegistrationRequest, LoginRequest, LogoutRequest, RefreshRequest, SignupRequest
from .service import TenantDirectory, sanitize_tenant, sanitize_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])
agents_router = APIRouter(prefix="/api/agents", tags=["Agents"])

signup_limit = create_rate_limiter(config.AUTH_RATE_LIMIT, config.AUTH_RATE_WINDOW_SECONDS, key_prefix="auth_signup")
login_limit = create_rate_limiter(config.AUTH_RATE_LIMIT, config.AUTH_RATE_WINDOW_SECONDS, key_prefix="auth_login")
refresh_limit = create_rate_limiter(
    config.AUTH_RATE_LIMIT, config.AUTH_RATE_WINDOW_SECONDS, key_prefix="auth_refresh"
)


def get_tenant_directory(
    db: Session = Depends(get_db), vault: CredentialVault = Depends(get_vault)
) -> TenantDirectory:
    """Dependency injection for TenantDirectory"""
    return TenantDirectory(db, vault)


def get_token_issuer(db: Session = Depends(get_db)) -> TokenIssuer:
    return TokenIssuer(db)


# ============================================================================
# REFRESH COOKIE
# ============================================================================


def set_refresh_cookie(response: Response, result: AuthResult) -> None:
    max_age = config.parse_duration(config.JWT_REFRESH_TTL)
    response.set_cookie(
        key=config.REFRESH_COOKIE_NAME,
        value=result.tokens.refresh_token,
        max_age=max_age,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite="strict",
        path=config.REFRESH_COOKIE_PATH,
        domain=config.AUTH_COOKIE_DOMAIN,
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=config.REFRESH_COOKIE_NAME,
        path=config.REFRESH_COOKIE_PATH,
        domain=config.AUTH_COOKIE_DOMAIN,
        secure=config.IS_PRODUCTION,
        httponly=True,
        samesite="strict",
    )


def auth_payload(result: AuthResult) -> dict:
    """The refresh token travels only in the httpOnly cookie"""
    return {
        "success": True,
        "tenant": sanitize_tenant(result.tenant),
        "user": sanitize_user(result.user),
        "tokens": result.tokens.to_dict(include_refresh_token=False),
    }


def _presented_refresh_token(request: Request, body_token: Optional[str]) -> Optional[str]:
    return body_token or request.cookies.get(config.REFRESH_COOKIE_NAME)


# ============================================================================
# AUTH ENDPOINTS
# ============================================================================


@router.post("/signup", status_code=201, dependencies=[Depends(signup_limit)])
async def signup(
    data: SignupRequest,
    response: Response,
    meta: ClientMeta = Depends(get_client_meta),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    logger.info(f"📥 Signup request for business: {data.businessName}")
    result = directory.register_tenant(
        business_name=data.businessName,
        email=str(data.email),
        password=data.password,
        timezone=data.timezone,
        industry=data.industry,
        name=data.name,
        meta=meta,
    )
    set_refresh_cookie(response, result)
    return auth_payload(result)


@router.post("/login", dependencies=[Depends(login_limit)])
async def login(
    data: LoginRequest,
    response: Response,
    meta: ClientMeta = Depends(get_client_meta),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    if not data.email or not data.password:
        raise ValidationError("email and password are required", code="missing_credentials")
    result = directory.authenticate(data.email, data.password, meta)
    set_refresh_cookie(response, result)
    return auth_payload(result)


@router.post("/refresh", dependencies=[Depends(refresh_limit)])
async def refresh(
    request: Request,
    response: Response,
    data: Optional[RefreshRequest] = None,
    meta: ClientMeta = Depends(get_client_meta),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    token = _presented_refresh_token(request, data.refreshToken if data else None)
    if not token:
        raise ValidationError("refresh token not provided", code="missing_refresh_token")

    try:
        result = issuer.refresh_session(token, meta)
    except AuthenticationError as e:
        # The precise cause is logged by the issuer; callers only learn that it failed
        raise AuthenticationError("Refresh failed", code="refresh_failed") from e

    set_refresh_cookie(response, result)
    return auth_payload(result)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    data: Optional[LogoutRequest] = None,
    current_user: TenantUser = Depends(get_current_user),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    data = data or LogoutRequest()
    token = _presented_refresh_token(request, data.refreshToken)

    if data.all:
        issuer.revoke_all_sessions(current_user.id)
    elif token:
        issuer.revoke_refresh_token(token, user_id=current_user.id)
    else:
        issuer.revoke_all_sessions(current_user.id)

    clear_refresh_cookie(response)
    return {"success": True}


@router.get("/me")
async def me(
    current_user: TenantUser = Depends(get_current_user),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    return {"success": True, "user": directory.get_user_profile(current_user.id)}


@router.get("/tenant")
async def tenant_context(
    claims: dict = Depends(get_token_claims),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """Secret-free view of the caller's tenant, including Square connection status"""
    context = directory.get_tenant_context(claims.get("tenantId"))
    return {"success": True, "tenant": context.public_view()}


# ============================================================================
# VOICE AGENTS
# ============================================================================


@agents_router.post("", status_code=201)
async def register_agent(
    data: AgentRegistrationRequest,
    current_user: TenantUser = Depends(require_roles("owner", "admin")),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """Register a voice agent. The bearer token is returned once and stored encrypted."""
    agent, token = directory.register_agent(
        tenant_id=current_user.tenant_id,
        retell_agent_id=data.retellAgentId,
        display_name=data.displayName,
        bearer_token=data.bearerToken,
    )
    return {
        "success": True,
        "agent": {
            "id": agent.id,
            "retellAgentId": agent.retell_agent_id,
            "displayName": agent.display_name,
            "status": agent.status,
        },
        "bearerToken": token,
    }


@agents_router.get("")
async def list_agents(
    current_user: TenantUser = Depends(get_current_user),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    agents = directory.repo.list_agents(directory.db, current_user.tenant_id)
    return {
        "success": True,
        "agents": [
            {"id": a.id, "retellAgentId": a.retell_agent_id, "displayName": a.display_name, "status": a.status}
            for a in agents
        ],
    }
