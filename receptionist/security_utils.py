"""
Security utilities: password hashing, refresh-token digests, signed payloads
and masking helpers for logs
"""

import hashlib
import hmac
import logging
import re
import secrets
from typing import Any, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext

from . import config

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

# Verified against when the account does not exist so both paths cost one bcrypt check
_DUMMY_PASSWORD_HASH = pwd_context.hash("dummy-password-for-timing")

MIN_PASSWORD_LENGTH = 8


# ============================================================================
# PASSWORD SECURITY
# ============================================================================


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against bcrypt hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        logger.error(f"Password verification error: {e}")
        return False


def dummy_verify(plain_password: str) -> None:
    pwd_context.verify(plain_password or "", _DUMMY_PASSWORD_HASH)


# ============================================================================
# REFRESH TOKEN DIGESTS
# ============================================================================


def hash_refresh_token(token: str, salt: Optional[str] = None) -> str:
    """
    Salted SHA-256 digest of a refresh token, stored as ``salt$digest``.

    bcrypt only looks at the first 72 bytes, which for a JWT is the shared
    header and part of the claims, so it cannot tell two refresh tokens apart.
    """
    salt = salt or secrets.token_hex(16)
    digest = hmac.new(salt.encode(), token.encode(), hashlib.sha256).hexdigest()
    return f"{salt}${digest}"


def verify_refresh_token_hash(token: str, stored_hash: str) -> bool:
    if not token or not stored_hash or "$" not in stored_hash:
        return False
    salt, _ = stored_hash.split("$", 1)
    return constant_time_compare(hash_refresh_token(token, salt), stored_hash)


# ============================================================================
# SIGNED PAYLOADS
# ============================================================================


def generate_timed_token(data: dict[str, Any], salt: str = "security-token") -> str:
    """Sign a payload with itsdangerous so it can travel through untrusted hands"""
    serializer = URLSafeTimedSerializer(config.SECRET_KEY)
    return serializer.dumps(data, salt=salt)


def verify_timed_token(token: str, max_age: int = 3600, salt: str = "security-token") -> Optional[dict[str, Any]]:
    """
    Verify and decode a timed token

    Returns:
        Decoded data if valid, None if invalid or expired
    """
    if not token or not isinstance(token, str):
        return None
    serializer = URLSafeTimedSerializer(config.SECRET_KEY)
    try:
        return serializer.loads(token, salt=salt, max_age=max_age)
    except SignatureExpired:
        logger.warning("Token expired")
        return None
    except BadSignature:
        logger.warning("Invalid token signature")
        return None


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token"""
    return secrets.token_urlsafe(length)


# ============================================================================
# AUDIT LOGGING
# ============================================================================


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
):
    """
    Log security-related events for audit trail

    Args:
        event_type: Type of security event (login, logout, refresh_failed, etc.)
        user_id: User identifier
        ip_address: Client IP address
        details: Additional event details, never secrets
    """
    log_entry = {
        "event_type": event_type,
        "user_id": user_id,
        "ip_address": ip_address,
        "details": details or {},
    }
    logger.info(f"SECURITY_EVENT: {log_entry}")


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time to prevent timing attacks"""
    if a is None or b is None:
        return False
    return secrets.compare_digest(a.encode(), b.encode())


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """
    Mask sensitive data for logging/display

    Args:
        data: Sensitive data to mask
        visible_chars: Number of characters to show at the end
    """
    if not data:
        return ""
    if len(data) <= visible_chars * 2:
        return "*" * len(data)

    return "*" * (len(data) - visible_chars) + data[-visible_chars:]


_EMAIL_PATTERN = re.compile(r"^([^@]{0,2})[^@]*(@.*)$")


def mask_email(email: str) -> str:
    """owner@example.com -> ow***@example.com"""
    if not email:
        return ""
    return _EMAIL_PATTERN.sub(r"\1***\2", email)
