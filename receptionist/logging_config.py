"""
Logging setup with redaction of tokens and credentials
"""

import logging
import re

from . import config

# Order matters: JWTs and bearer headers are redacted before the generic key=value rule
_REDACTIONS = (
    (re.compile(r"ey[A-Za-z0-9_-]{8,}\.ey[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]+"), "[REDACTED_JWT]"),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9\-._~+/]+=*"), r"\1[REDACTED]"),
    (re.compile(r"\b(EAAA|sq0[a-z]{3}-)[A-Za-z0-9_-]{10,}"), "[REDACTED_SQUARE_TOKEN]"),
    (
        re.compile(
            r"(?i)((?:access_token|refresh_token|accessToken|refreshToken|client_secret|password|api_bearer_token)"
            r"[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}&]+)"
        ),
        r"\1[REDACTED]",
    ),
)


def redact(text: str) -> str:
    """Mask anything that looks like a credential in a log line"""
    if not text:
        return text
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Rewrites the rendered message so secrets never reach a handler"""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level or config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    redacting_filter = RedactingFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(redacting_filter)

    # Reduce verbosity of third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
