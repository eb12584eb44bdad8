"""Square OAuth router - authorization URL and callback endpoints"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...auth import get_current_user
from ...database import get_db, transaction
from ...deps import get_square_transport, get_vault
from ...errors import AppError, UpstreamError
from ...models import TenantUser
from ..vault import CredentialStore, CredentialVault
from ..vault.repository import CredentialRepository
from .pages import render_error_page, render_success_page
from .service import (
    build_authorization_url,
    build_state,
    decode_state,
    exchange_code_for_tokens,
    fetch_seller_metadata,
    normalize_environment,
    verify_state_binding,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Square OAuth"])

SELLER_LEVEL_LABEL = "Seller-level (Plus/Premium)"
BUYER_LEVEL_LABEL = "Buyer-level (Free plan)"
CODE_REJECTED_MESSAGE = "Square rejected the authorization code. It may be expired or already used."
EXCHANGE_FAILED_MESSAGE = "Unexpected error while exchanging the authorization code."


def wants_json(request: Request) -> bool:
    """JSON only when the client prefers it over HTML"""
    accept = (request.headers.get("accept") or "").lower()
    if "application/json" not in accept:
        return False
    if "text/html" not in accept:
        return True
    return accept.index("application/json") < accept.index("text/html")


def build_redirect_uri(request: Request) -> str:
    protocol = request.headers.get("x-forwarded-proto") or request.url.scheme or "https"
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{protocol}://{host}{request.url.path}"


def _error_response(request: Request, status_code: int, error: str, message: str, title: str, next_steps: list[str]):
    if wants_json(request):
        return JSONResponse(status_code=status_code, content={"success": False, "error": error, "message": message})
    return HTMLResponse(status_code=status_code, content=render_error_page(title, message, next_steps))


@router.get("/api/oauth/authorize")
async def authorize(
    request: Request,
    agentId: Optional[str] = Query(None),
    environment: Optional[str] = Query(None),
    current_user: TenantUser = Depends(get_current_user),
):
    """Authorization URL whose state binds the callback to the caller's tenant"""
    redirect_uri = config.SQUARE_REDIRECT_URI or str(request.url_for("square_oauth_callback"))
    tenant = current_user.tenant
    state = build_state(
        tenant_id=tenant.id,
        business_name=tenant.business_name,
        agent_id=agentId,
        environment=environment,
        redirect_uri=redirect_uri,
    )
    url = build_authorization_url(
        config.SQUARE_APPLICATION_ID,
        state,
        environment=environment or config.SQUARE_ENVIRONMENT,
        redirect_uri=redirect_uri,
    )
    logger.info(f"🔗 Square authorization URL issued for tenant {tenant.id}")
    return {"success": True, "authorizationUrl": url, "state": state}


def _persist_credentials(db: Session, vault: CredentialVault, binding: dict, tokens, metadata, environment, merchant_id):
    tenant_id = binding["tenantId"]
    agent_pk = None
    if binding.get("agentId"):
        agent = CredentialRepository.get_agent_by_retell_id(db, binding["agentId"])
        agent_pk = agent.id if agent and agent.tenant_id == tenant_id else None

    with transaction(db):
        CredentialStore(db, vault).store_square_credentials(
            tenant_id=tenant_id,
            merchant_id=merchant_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at_datetime,
            scopes=tokens.scopes,
            agent_id=agent_pk,
            default_location_id=metadata.default_location_id if metadata else None,
            environment=environment,
            supports_seller_level_writes=bool(metadata and metadata.supports_seller_level_writes),
        )


@router.get("/authcallback", name="square_oauth_callback")
@router.get("/api/oauth/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_square_transport),
):
    logger.info(f"📥 Square OAuth callback: has_code={bool(code)} has_state={bool(state)} error={error}")

    if error:
        return _error_response(
            request,
            400,
            error,
            error_description or "Square rejected the authorization request.",
            "Square Authorization Declined",
            [
                "Verify the seller granted the requested permissions.",
                "Retry the authorization flow from your dashboard.",
            ],
        )

    if not code:
        return _error_response(
            request,
            400,
            "missing_code",
            "Missing authorization code in callback request.",
            "Authorization Code Missing",
            [
                "Confirm the redirect URL matches the one configured in the Square Developer Portal.",
                "Restart the OAuth flow to generate a new authorization code (codes expire after 5 minutes).",
            ],
        )

    state_info = decode_state(state)
    state_data = state_info.data or {}
    environment = normalize_environment(
        state_data.get("environment")
        or state_data.get("squareEnvironment")
        or state_data.get("env")
        or config.SQUARE_ENVIRONMENT
        or "sandbox"
    )
    redirect_uri = state_data.get("redirectUri") or state_data.get("redirect_uri") or build_redirect_uri(request)

    try:
        tokens = await exchange_code_for_tokens(
            code=code,
            client_id=config.SQUARE_APPLICATION_ID,
            client_secret=config.SQUARE_APPLICATION_SECRET,
            environment=environment,
            redirect_uri=redirect_uri,
            transport=transport,
        )
    except AppError as e:
        logger.error(f"❌ Square OAuth callback failed: {e.code} status={e.status_code}")
        is_rejected = isinstance(e, UpstreamError) and e.status_code == 400
        return _error_response(
            request,
            e.status_code,
            "token_exchange_failed",
            CODE_REJECTED_MESSAGE if is_rejected else EXCHANGE_FAILED_MESSAGE,
            "Token Exchange Failed",
            [
                "Start a new OAuth authorization from your dashboard.",
                "Verify the Square Application ID and Secret are configured correctly.",
            ],
        )

    metadata = None
    try:
        metadata = await fetch_seller_metadata(tokens.access_token, environment, transport=transport)
    except (AppError, httpx.HTTPError) as e:
        logger.warning(f"⚠️ Square OAuth metadata fetch failed: {type(e).__name__}")

    merchant_id = tokens.merchant_id or (metadata.merchant_id if metadata else None) or state_data.get("merchantId")
    supports_seller_level_writes = bool(metadata and metadata.supports_seller_level_writes)
    default_location_id = (metadata.default_location_id if metadata else None) or state_data.get("locationId")
    business_name = (metadata.display_name if metadata else None) or state_data.get("businessName")
    default_location = metadata.default_location() if metadata else None

    credentials_stored = False
    binding = verify_state_binding(state_data) if state_info.is_decoded else None
    if binding and merchant_id:
        try:
            _persist_credentials(db, vault, binding, tokens, metadata, environment, merchant_id)
            credentials_stored = True
            logger.info(f"✅ Square credentials stored for tenant {binding['tenantId']}")
        except AppError as e:
            logger.error(f"❌ Failed to store Square credentials: {e.message}")
        except SQLAlchemyError as e:
            logger.error(f"❌ Database error while storing Square credentials: {type(e).__name__}")
    elif state_info.is_decoded and state_data.get("tenantId"):
        logger.warning("⚠️ OAuth state names a tenant but its binding is missing or invalid; not storing credentials")

    summary = {
        "success": True,
        "agentId": state_data.get("agentId"),
        "environment": environment,
        "merchantId": merchant_id,
        "expiresAt": tokens.expires_at,
        "scopes": tokens.scopes,
        "businessName": business_name,
        "defaultLocationId": default_location_id,
        "defaultLocationName": default_location.get("name") if default_location else None,
        "supportsSellerLevelWrites": supports_seller_level_writes,
        "sellerPlan": SELLER_LEVEL_LABEL if supports_seller_level_writes else BUYER_LEVEL_LABEL,
        "timezone": metadata.timezone if metadata else None,
        "locations": metadata.locations if metadata else [],
        "credentialsStored": credentials_stored,
    }

    if wants_json(request):
        return summary
    return HTMLResponse(content=render_success_page(summary))
