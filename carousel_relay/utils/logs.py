"""Logging setup with redaction of credentials."""

import logging
import re

SENSITIVE_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(
        r"""(["']?\b(?:access_token|refresh_token|client_secret|secret|password|api_key|key)\b["']?\s*[:=]\s*["']?)[^"',\s}]+""",
        re.IGNORECASE,
    ),
)
REDACTED = "[REDACTED]"


def redact(text: str) -> str:
    """Replace bearer tokens and secret-looking values in a string."""
    for pattern in SENSITIVE_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


class SensitiveDataFilter(logging.Filter):
    """Scrub tokens and secrets from log records before they are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the service."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    sensitive_filter = SensitiveDataFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SensitiveDataFilter) for f in handler.filters):
            handler.addFilter(sensitive_filter)
