"""Token issuer - access/refresh token signing and refresh-session rotation"""

import calendar
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from ... import config
from ...errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidToken,
    SessionExpired,
    SessionRevoked,
    TokenMismatch,
    UserDisabled,
)
from ...models import Tenant, TenantUser, TenantUserSession, new_id, utcnow
from ...security_utils import hash_refresh_token, log_security_event, verify_refresh_token_hash
from .repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass
class ClientMeta:
    """Where a session was created from"""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str
    access_token_expires_in: int
    refresh_token_expires_at: datetime
    session_id: str
    token_type: str = "Bearer"

    def to_dict(self, include_refresh_token: bool = True) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token if include_refresh_token else None,
            "tokenType": self.token_type,
            "expiresIn": self.access_token_expires_in,
            "refreshTokenExpiresAt": self.refresh_token_expires_at.isoformat() + "Z",
        }


@dataclass
class AuthResult:
    tenant: Tenant
    user: TenantUser
    tokens: SessionTokens


def _epoch(moment: datetime) -> int:
    return calendar.timegm(moment.utctimetuple())


class TokenIssuer:
    """
    Signs access tokens and manages refresh-token sessions.

    Access and refresh tokens are signed with separate secrets. Each refresh
    token maps to one session row holding its salted digest; a successful
    refresh consumes that row.
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        access_secret: Optional[str] = None,
        refresh_secret: Optional[str] = None,
        access_ttl: Optional[str] = None,
        refresh_ttl: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self.db = db
        self.repo = SessionRepository()
        self.access_secret = access_secret or config.JWT_ACCESS_SECRET
        self.refresh_secret = refresh_secret or config.JWT_REFRESH_SECRET
        self.access_ttl_seconds = config.parse_duration(access_ttl or config.JWT_ACCESS_TTL, default_seconds=900)
        self.refresh_ttl_seconds = config.parse_duration(refresh_ttl or config.JWT_REFRESH_TTL)
        self.issuer = issuer or config.JWT_ISSUER
        self.algorithm = config.JWT_ALGORITHM

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def _secret(self, kind: str) -> str:
        secret = self.access_secret if kind == "access" else self.refresh_secret
        if not secret:
            name = "JWT_ACCESS_SECRET" if kind == "access" else "JWT_REFRESH_SECRET"
            raise ConfigurationError(f"{name} is not configured")
        return secret

    def _sign_access_token(self, user: TenantUser, tenant: Tenant, now: datetime) -> str:
        claims = {
            "sub": user.id,
            "tenantId": tenant.id,
            "role": user.role,
            "email": user.email,
            "slug": tenant.slug,
            "type": "access",
            "iss": self.issuer,
            "iat": _epoch(now),
            "exp": _epoch(now + timedelta(seconds=self.access_ttl_seconds)),
        }
        return jwt.encode(claims, self._secret("access"), algorithm=self.algorithm)

    def _sign_refresh_token(
        self, user: TenantUser, tenant: Tenant, session_id: str, now: datetime, expires_at: datetime
    ) -> str:
        claims = {
            "sub": user.id,
            "tenantId": tenant.id,
            "role": user.role,
            "sid": session_id,
            "type": "refresh",
            "jti": secrets.token_hex(8),
            "iss": self.issuer,
            "iat": _epoch(now),
            "exp": _epoch(expires_at),
        }
        return jwt.encode(claims, self._secret("refresh"), algorithm=self.algorithm)

    def _decode(self, token: str, kind: str, verify_exp: bool = True) -> dict[str, Any]:
        if not token or not isinstance(token, str):
            raise InvalidToken("Token missing")
        try:
            claims = jwt.decode(
                token,
                self._secret(kind),
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_aud": False, "verify_exp": verify_exp},
            )
        except ExpiredSignatureError as e:
            if kind == "access":
                raise InvalidToken("Access token expired") from e
            raise SessionExpired("Token expired") from e
        except JWTError as e:
            raise InvalidToken(f"Invalid {kind} token") from e
        if claims.get("type") != kind:
            raise InvalidToken(f"Expected {kind} token")
        return claims

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """Validate signature, issuer, expiry and type. Returns the claims."""
        return self._decode(token, "access")

    def decode_refresh_token(self, token: str, verify_exp: bool = True) -> dict[str, Any]:
        return self._decode(token, "refresh", verify_exp=verify_exp)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _create_session(
        self, user: TenantUser, tenant: Tenant, meta: Optional[ClientMeta], now: datetime
    ) -> SessionTokens:
        meta = meta or ClientMeta()
        session_id = new_id()
        expires_at = now + timedelta(seconds=self.refresh_ttl_seconds)

        access_token = self._sign_access_token(user, tenant, now)
        refresh_token = self._sign_refresh_token(user, tenant, session_id, now, expires_at)

        self.db.add(
            TenantUserSession(
                id=session_id,
                tenant_user_id=user.id,
                tenant_id=tenant.id,
                refresh_token_hash=hash_refresh_token(refresh_token),
                user_agent=(meta.user_agent or "")[:512] or None,
                ip_address=meta.ip_address,
                expires_at=expires_at,
            )
        )
        return SessionTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_in=self.access_ttl_seconds,
            refresh_token_expires_at=expires_at,
            session_id=session_id,
        )

    def issue_session_tokens(
        self, user: TenantUser, tenant: Tenant, meta: Optional[ClientMeta] = None
    ) -> SessionTokens:
        """Sign a new token pair and persist the session holding the refresh digest"""
        try:
            tokens = self._create_session(user, tenant, meta, utcnow())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"✅ Session {tokens.session_id} issued for user {user.id}")
        return tokens

    def refresh_session(self, refresh_token: str, meta: Optional[ClientMeta] = None) -> AuthResult:
        """
        Rotate a refresh token.

        The presented session is consumed with a conditional update, so of two
        concurrent refreshes with the same token exactly one succeeds.
        """
        meta = meta or ClientMeta()
        try:
            return self._rotate(refresh_token, meta)
        except AuthenticationError as e:
            log_security_event(
                "refresh_failed",
                ip_address=meta.ip_address,
                details={"reason": type(e).__name__, "message": e.message},
            )
            raise

    def _rotate(self, refresh_token: str, meta: ClientMeta) -> AuthResult:
        claims = self.decode_refresh_token(refresh_token)
        now = utcnow()

        session = self.repo.get_session(self.db, claims.get("sid"))
        if session is None or session.revoked_at is not None:
            raise SessionRevoked()
        if session.expires_at <= now:
            raise SessionExpired()
        if not verify_refresh_token_hash(refresh_token, session.refresh_token_hash):
            raise TokenMismatch()
        if session.tenant_user_id != claims.get("sub"):
            raise TokenMismatch("Session does not belong to token subject")

        user = self.repo.get_user(self.db, session.tenant_user_id)
        if user is None or not user.is_active:
            raise UserDisabled()
        tenant = self.repo.get_tenant(self.db, session.tenant_id)
        if tenant is None:
            raise UserDisabled("Tenant no longer exists")

        session_id = session.id
        try:
            if not self.repo.claim_session(self.db, session_id, now):
                self.db.rollback()
                raise SessionRevoked("Session already used")
            tokens = self._create_session(user, tenant, meta, now)
            self.db.commit()
        except AuthenticationError:
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"🔄 Session {session_id} rotated to {tokens.session_id} for user {user.id}")
        return AuthResult(tenant=tenant, user=user, tokens=tokens)

    def revoke_refresh_token(self, refresh_token: str, user_id: Optional[str] = None) -> bool:
        """Revoke the session behind a refresh token. Never raises on bad input.

        When user_id is given, tokens belonging to anyone else are ignored.
        """
        try:
            claims = self.decode_refresh_token(refresh_token, verify_exp=False)
        except AuthenticationError as e:
            logger.warning(f"⚠️ Ignoring revoke for unusable refresh token: {e.message}")
            return False
        if user_id and claims.get("sub") != user_id:
            logger.warning(f"⚠️ Ignoring revoke of another user's refresh token by {user_id}")
            return False

        session_id = claims.get("sid")
        try:
            revoked = self.repo.revoke_session(self.db, session_id, utcnow())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if not revoked:
            logger.info(f"Session {session_id} was already revoked or does not exist")
            return False
        log_security_event("session_revoked", user_id=claims.get("sub"), details={"session_id": session_id})
        return True

    def revoke_all_sessions(self, user_id: str) -> int:
        try:
            count = self.repo.revoke_user_sessions(self.db, user_id, utcnow())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log_security_event("sessions_revoked", user_id=user_id, details={"count": count})
        return count
