import logging
import os
import re
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

logger = logging.getLogger(__name__)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./receptionist.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Session tokens. Access and refresh tokens are signed with separate secrets.
JWT_ACCESS_SECRET = os.getenv("JWT_ACCESS_SECRET")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET")
JWT_ACCESS_TTL = os.getenv("JWT_ACCESS_TTL", "15m")
JWT_REFRESH_TTL = os.getenv("JWT_REFRESH_TTL", "30d")
JWT_ISSUER = os.getenv("JWT_ISSUER", "receptionist-api")
JWT_ALGORITHM = "HS256"

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Credential encryption at rest (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
DB_ENCRYPTION_KEY = os.getenv("DB_ENCRYPTION_KEY")

# Square OAuth Configuration
SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "sandbox")  # sandbox or production
SQUARE_APPLICATION_ID = os.getenv("SQUARE_APPLICATION_ID")
SQUARE_APPLICATION_SECRET = os.getenv("SQUARE_APPLICATION_SECRET")
SQUARE_REDIRECT_URI = os.getenv("SQUARE_REDIRECT_URI")
SQUARE_API_VERSION = os.getenv("SQUARE_API_VERSION", "2024-12-18")
SQUARE_OAUTH_SCOPES = os.getenv(
    "SQUARE_OAUTH_SCOPES",
    "MERCHANT_PROFILE_READ APPOINTMENTS_READ APPOINTMENTS_WRITE APPOINTMENTS_BUSINESS_SETTINGS_READ "
    "APPOINTMENTS_ALL_READ APPOINTMENTS_ALL_WRITE CUSTOMERS_READ CUSTOMERS_WRITE ITEMS_READ EMPLOYEES_READ",
)
SQUARE_HTTP_TIMEOUT = float(os.getenv("SQUARE_HTTP_TIMEOUT", "15"))

# Single-tenant deployment credentials, used only by the environment fallback
SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN")
SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID")
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Default Business")
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
ALLOW_ENV_TENANT_FALLBACK = (
    os.getenv("ALLOW_ENV_TENANT_FALLBACK", "false" if IS_PRODUCTION else "true").lower() == "true"
)

# Signup
BASE_PLAN_CODE = os.getenv("BASE_PLAN_CODE", "basic")
TRIAL_DAYS = int(os.getenv("TRIAL_DAYS", "14"))

# OAuth state binding lifetime in seconds
OAUTH_STATE_MAX_AGE = int(os.getenv("OAUTH_STATE_MAX_AGE", "3600"))

# Refresh token cookie
REFRESH_COOKIE_NAME = os.getenv("REFRESH_COOKIE_NAME", "refreshToken")
REFRESH_COOKIE_PATH = "/api/auth"
AUTH_COOKIE_DOMAIN = os.getenv("AUTH_COOKIE_DOMAIN") or None

# Rate limiting for signup/login/refresh
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", "20"))
AUTH_RATE_WINDOW_SECONDS = int(os.getenv("AUTH_RATE_WINDOW_SECONDS", "900"))
REDIS_URL = os.getenv("REDIS_URL")

# CORS Configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")

REQUIRED_SECRETS = ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET", "DB_ENCRYPTION_KEY")

_DURATION_PATTERN = re.compile(r"^(\d+)([smhd])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value, default_seconds: int = 30 * 86400) -> int:
    """Convert a TTL like "15m", "30d" or "3600" to seconds.

    Unparseable values fall back to ``default_seconds``.
    """
    if isinstance(value, int):
        return value
    if not value:
        return default_seconds
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    match = _DURATION_PATTERN.match(text)
    if not match:
        logger.warning(f"⚠️ Unparseable duration '{text}', using {default_seconds}s")
        return default_seconds
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


def validate_config() -> list[str]:
    """Return the names of required secrets that are not configured"""
    return [name for name in REQUIRED_SECRETS if not globals().get(name)]
