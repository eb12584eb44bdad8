import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .database import get_db
from .domain.tokens import TokenIssuer
from .errors import AuthenticationError, ForbiddenError
from .models import TenantUser

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is reported through our own 401 payload
security = HTTPBearer(auto_error=False)


def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Verified access-token claims for the dashboard user"""
    if not credentials or not credentials.credentials:
        raise AuthenticationError("Not authenticated. Please provide a valid Bearer token in the Authorization header.")

    token = credentials.credentials
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received: token length: {len(token)}")
        raise AuthenticationError("Invalid token format. Expected a valid JWT token.")

    try:
        return TokenIssuer().verify_access_token(token)
    except AuthenticationError as e:
        logger.info(f"🔒 Access token rejected: {e.message}")
        raise AuthenticationError("Invalid or expired access token") from e


def get_current_user(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> TenantUser:
    user = db.query(TenantUser).filter(TenantUser.id == claims.get("sub")).first()
    if user is None or not user.is_active:
        logger.warning(f"⚠️ Token subject {claims.get('sub')} is missing or inactive")
        raise AuthenticationError("Invalid or expired access token")
    if user.tenant_id != claims.get("tenantId"):
        logger.warning(f"⚠️ Token tenant mismatch for user {user.id}")
        raise AuthenticationError("Invalid or expired access token")
    return user


def require_roles(*roles: str):
    """
    Dependency factory restricting a route to the given roles

    Example:
        @router.post("", dependencies=[Depends(require_roles("owner", "admin"))])
    """

    def checker(user: TenantUser = Depends(get_current_user)) -> TenantUser:
        if user.role not in roles:
            logger.warning(f"⚠️ User {user.id} with role {user.role} denied, needs one of {roles}")
            raise ForbiddenError("Insufficient role")
        return user

    return checker
