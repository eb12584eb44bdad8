"""
Square OAuth bridge

State encoding/decoding, the authorization-code exchange and best-effort
seller metadata enrichment. Access and refresh tokens are never logged.
"""

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from ... import config
from ...errors import ConfigurationError, UpstreamError, ValidationError
from ...security_utils import generate_timed_token, mask_sensitive_data, verify_timed_token

logger = logging.getLogger(__name__)

SQUARE_BASE_URLS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}
STATE_BINDING_SALT = "square-oauth-state"
MAX_STATE_LENGTH = 4096


def normalize_environment(value: Optional[str]) -> str:
    return "production" if str(value or "").strip().lower() in ("production", "live") else "sandbox"


def square_base_url(environment: Optional[str]) -> str:
    return SQUARE_BASE_URLS[normalize_environment(environment)]


def _square_headers(access_token: Optional[str] = None) -> dict:
    headers = {
        "Square-Version": config.SQUARE_API_VERSION,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    return headers


# ============================================================================
# STATE
# ============================================================================


@dataclass
class DecodedState:
    raw: Optional[str]
    data: Optional[dict]
    is_decoded: bool


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def decode_state(state: Any) -> DecodedState:
    """
    Decode the OAuth state parameter.

    Accepts base64url-encoded JSON or raw JSON. Anything else comes back with
    is_decoded=False. Never raises.
    """
    if not state or not isinstance(state, str):
        return DecodedState(raw=None, data=None, is_decoded=False)

    trimmed = state.strip()
    if len(trimmed) > MAX_STATE_LENGTH:
        logger.warning(f"⚠️ OAuth state too long to decode ({len(trimmed)} chars)")
        return DecodedState(raw=None, data=None, is_decoded=False)

    try:
        data = json.loads(_b64url_decode(trimmed).decode("utf-8"))
        if isinstance(data, dict):
            return DecodedState(raw=trimmed, data=data, is_decoded=True)
    except (binascii.Error, ValueError, UnicodeError, RecursionError) as e:
        logger.debug(f"OAuth state not base64 encoded: {e}")

    try:
        data = json.loads(trimmed)
        if isinstance(data, dict):
            return DecodedState(raw=trimmed, data=data, is_decoded=True)
    except (ValueError, RecursionError) as e:
        logger.debug(f"OAuth state not JSON encoded: {e}")

    return DecodedState(raw=trimmed, data=None, is_decoded=False)


def encode_state(payload: dict) -> str:
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def build_state(
    tenant_id: str,
    business_name: Optional[str] = None,
    agent_id: Optional[str] = None,
    environment: Optional[str] = None,
    redirect_uri: Optional[str] = None,
) -> str:
    """State for a tenant-initiated authorization, with a signed tenant binding"""
    environment = normalize_environment(environment or config.SQUARE_ENVIRONMENT)
    nonce = secrets.token_hex(16)
    payload = {
        "tenantId": tenant_id,
        "agentId": agent_id,
        "businessName": business_name,
        "environment": environment,
        "redirectUri": redirect_uri,
        "nonce": nonce,
    }
    payload["binding"] = generate_timed_token(
        {"tenantId": tenant_id, "agentId": agent_id, "nonce": nonce}, salt=STATE_BINDING_SALT
    )
    return encode_state(payload)


def verify_state_binding(data: Optional[dict]) -> Optional[dict]:
    """Return the signed binding when it is valid and matches the visible state fields"""
    if not data:
        return None
    binding = verify_timed_token(data.get("binding"), max_age=config.OAUTH_STATE_MAX_AGE, salt=STATE_BINDING_SALT)
    if not binding:
        return None
    if binding.get("tenantId") != data.get("tenantId") or binding.get("nonce") != data.get("nonce"):
        logger.warning("⚠️ OAuth state binding does not match state payload")
        return None
    return binding


def build_authorization_url(
    client_id: str,
    state: str,
    environment: Optional[str] = None,
    scopes: Optional[str] = None,
    redirect_uri: Optional[str] = None,
) -> str:
    if not client_id:
        raise ConfigurationError("Square OAuth client credentials are not configured")
    params = {
        "client_id": client_id,
        "scope": scopes or config.SQUARE_OAUTH_SCOPES,
        "session": "false",
        "state": state,
    }
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    return f"{square_base_url(environment)}/oauth2/authorize?{urlencode(params)}"


# ============================================================================
# TOKEN EXCHANGE
# ============================================================================


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str]
    merchant_id: Optional[str]
    expires_at: Optional[str]
    token_type: Optional[str] = None
    scopes: list[str] = field(default_factory=list)

    @property
    def expires_at_datetime(self) -> Optional[datetime]:
        """Naive UTC datetime for the expiry, or None when absent or unparseable"""
        if not self.expires_at or not isinstance(self.expires_at, str):
            return None
        try:
            parsed = datetime.fromisoformat(self.expires_at.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"⚠️ Unparseable Square token expiry: {self.expires_at}")
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list):
        first = errors[0] if isinstance(errors[0], dict) else {}
        return f"{first.get('category')}: {first.get('code')} {first.get('detail') or ''}".strip()
    if isinstance(body, dict):
        return body.get("message") or body.get("error")
    return None


async def exchange_code_for_tokens(
    code: Optional[str],
    client_id: Optional[str],
    client_secret: Optional[str],
    environment: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scopes: Optional[list[str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> OAuthTokens:
    """Exchange an authorization code for tokens. Single attempt: codes are one-time."""
    if not client_id or not client_secret:
        raise ConfigurationError("Square OAuth client credentials are not configured")
    if not code:
        raise ValidationError("Authorization code is required to obtain Square OAuth tokens", code="missing_code")

    environment = normalize_environment(environment)
    body = {
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "grant_type": "authorization_code",
    }
    if redirect_uri:
        body["redirect_uri"] = redirect_uri

    logger.info(f"🔄 Exchanging Square OAuth authorization code ({environment})")
    try:
        async with httpx.AsyncClient(transport=transport, timeout=config.SQUARE_HTTP_TIMEOUT) as client:
            response = await client.post(
                f"{square_base_url(environment)}/oauth2/token", json=body, headers=_square_headers()
            )
    except httpx.HTTPError as e:
        logger.error(f"❌ Square token exchange request failed: {type(e).__name__}")
        raise UpstreamError("Square token endpoint unreachable", code="token_exchange_failed") from e

    if response.status_code != 200:
        detail = _error_detail(response)
        logger.error(f"❌ Square token exchange failed: status={response.status_code} detail={detail}")
        if 400 <= response.status_code < 500:
            raise UpstreamError(
                "Square rejected the authorization code",
                code="token_exchange_failed",
                status_code=400,
                upstream_status=response.status_code,
                details=detail,
            )
        raise UpstreamError(
            "Square token endpoint error",
            code="token_exchange_failed",
            upstream_status=response.status_code,
            details=detail,
        )

    try:
        result = response.json()
    except ValueError as e:
        raise UpstreamError("Square returned an unreadable token response", code="token_exchange_failed") from e
    if not isinstance(result, dict) or not result.get("access_token"):
        raise UpstreamError("Square OAuth token exchange returned an empty response", code="token_exchange_failed")

    tokens = OAuthTokens(
        access_token=result["access_token"],
        refresh_token=result.get("refresh_token"),
        merchant_id=result.get("merchant_id"),
        expires_at=result.get("expires_at"),
        token_type=result.get("token_type"),
        scopes=list(scopes if scopes is not None else config.SQUARE_OAUTH_SCOPES.split()),
    )
    logger.info(
        f"✅ Square OAuth token exchange succeeded: merchant={mask_sensitive_data(tokens.merchant_id or '')} "
        f"expires_at={tokens.expires_at}"
    )
    return tokens


# ============================================================================
# SELLER METADATA
# ============================================================================


@dataclass
class SellerMetadata:
    merchant_id: Optional[str] = None
    booking_profile: Optional[dict] = None
    locations: list[dict] = field(default_factory=list)
    default_location_id: Optional[str] = None
    supports_seller_level_writes: bool = False
    timezone: Optional[str] = None
    display_name: Optional[str] = None

    def default_location(self) -> Optional[dict]:
        return next((loc for loc in self.locations if loc.get("id") == self.default_location_id), None)


def _summarize_location(location: dict) -> dict:
    address = location.get("address")
    if not isinstance(address, dict):
        address = None
    return {
        "id": location.get("id"),
        "name": location.get("name"),
        "status": location.get("status"),
        "timezone": location.get("timezone"),
        "address": (
            {
                "addressLine1": address.get("address_line_1"),
                "locality": address.get("locality"),
                "administrativeDistrictLevel1": address.get("administrative_district_level_1"),
                "postalCode": address.get("postal_code"),
                "country": address.get("country"),
            }
            if address
            else None
        ),
    }


async def _get_json(client: httpx.AsyncClient, url: str, access_token: str, label: str) -> Optional[dict]:
    try:
        response = await client.get(url, headers=_square_headers(access_token))
    except httpx.HTTPError as e:
        logger.warning(f"⚠️ Failed to retrieve {label}: {type(e).__name__}")
        return None
    if response.status_code != 200:
        logger.warning(f"⚠️ Failed to retrieve {label}: status={response.status_code}")
        return None
    try:
        body = response.json()
    except ValueError:
        logger.warning(f"⚠️ Unreadable {label} response")
        return None
    if not isinstance(body, dict):
        logger.warning(f"⚠️ Unexpected {label} response shape: {type(body).__name__}")
        return None
    return body


async def fetch_seller_metadata(
    access_token: str,
    environment: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SellerMetadata:
    """Booking profile and locations. Each call may fail alone; partial data is returned."""
    if not access_token:
        raise ValidationError("Access token is required to fetch seller metadata")

    base_url = square_base_url(environment)
    async with httpx.AsyncClient(transport=transport, timeout=config.SQUARE_HTTP_TIMEOUT) as client:
        profile_body = await _get_json(
            client, f"{base_url}/v2/bookings/business-booking-profile", access_token, "business booking profile"
        )
        locations_body = await _get_json(client, f"{base_url}/v2/locations", access_token, "locations")

    booking_profile = (profile_body or {}).get("business_booking_profile")
    if not isinstance(booking_profile, dict):
        booking_profile = None
    raw_locations = (locations_body or {}).get("locations")
    if not isinstance(raw_locations, list):
        raw_locations = []
    raw_locations = [loc for loc in raw_locations if isinstance(loc, dict)]

    merchant_id = (booking_profile or {}).get("seller_id")
    if not merchant_id and raw_locations:
        merchant_id = raw_locations[0].get("merchant_id")

    default_location_id = (booking_profile or {}).get("location_id") or (
        raw_locations[0].get("id") if raw_locations else None
    )
    locations = [_summarize_location(loc) for loc in raw_locations]
    default_location = next((loc for loc in locations if loc["id"] == default_location_id), None)

    return SellerMetadata(
        merchant_id=merchant_id,
        booking_profile=booking_profile,
        locations=locations,
        default_location_id=default_location_id,
        supports_seller_level_writes=bool((booking_profile or {}).get("support_seller_level_writes")),
        timezone=(booking_profile or {}).get("timezone") or (default_location or {}).get("timezone"),
        display_name=(booking_profile or {}).get("business_name") or (default_location or {}).get("name"),
    )
