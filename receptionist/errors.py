"""
Application error taxonomy

Every error carries an HTTP status and a stable machine code. The handler
registered in main.py renders them as {"success": false, "error", "message"}.
"""

from typing import Optional


class AppError(Exception):
    status_code = 500
    code = "app_error"
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class AuthenticationError(AppError):
    status_code = 401
    code = "authentication_failed"
    default_message = "Authentication failed"


class InvalidToken(AuthenticationError):
    default_message = "Invalid token"


class SessionExpired(AuthenticationError):
    default_message = "Session expired"


class SessionRevoked(AuthenticationError):
    default_message = "Session revoked"


class TokenMismatch(AuthenticationError):
    default_message = "Token mismatch"


class UserDisabled(AuthenticationError):
    default_message = "User disabled"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class RateLimitError(AppError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests"

    def __init__(self, message: Optional[str] = None, *, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamError(AppError):
    """A call to Square failed. 4xx responses pass their status through."""

    status_code = 502
    code = "upstream_error"
    default_message = "Upstream service error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        upstream_status: Optional[int] = None,
        details=None,
    ):
        super().__init__(message, code=code, status_code=status_code)
        self.upstream_status = upstream_status
        self.details = details


class ConfigurationError(AppError):
    status_code = 500
    code = "configuration_error"
    default_message = "Server misconfiguration"


class SecretDecryptionError(ConfigurationError):
    code = "secret_decryption_failed"
    default_message = "Failed to decrypt stored secret"
