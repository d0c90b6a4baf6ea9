"""Logging setup with secret redaction."""

import logging
import re

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

REDACTED = "[REDACTED]"

_JWT_PATTERN = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]*")
_SECRET_PAIR_PATTERN = re.compile(
    r"\b(?P<key>access_token|refresh_token|id_token|id_token_hint|code_verifier|client_secret|code)"
    r"(?P<sep>['\"]?\s*[:=]\s*['\"]?)"
    r"(?P<value>[^\s'\"&,}]+)"
)


def redact(message: str) -> str:
    """Mask JWTs and known secret key/value pairs in a log message."""
    message = _JWT_PATTERN.sub(REDACTED, message)
    return _SECRET_PAIR_PATTERN.sub(lambda m: f"{m['key']}{m['sep']}{REDACTED}", message)


class RedactingFilter(logging.Filter):
    """Scrub tokens and secrets from records before they are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = redact(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the service."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
