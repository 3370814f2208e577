"""Centralized logging configuration."""

import json
import logging
import sys
from datetime import datetime, timezone

from codegen_gateway.core.config import settings
from codegen_gateway.gateway.errors import scrub_secrets


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "request_id"):
            log_data["request_id"] = record.request_id
        return json.dumps(log_data, ensure_ascii=False)


class RedactingFilter(logging.Filter):
    """Strip configured provider API keys from every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        secrets = [k for k in settings.provider_api_keys.values() if k]
        if not secrets:
            return True
        message = record.getMessage()
        scrubbed = scrub_secrets(message, secrets)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


def setup_logging() -> None:
    """Configure logging for the entire application."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RedactingFilter())

    if settings.log_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root.addHandler(handler)

    # Suppress noisy libraries (httpx logs full URLs, which carry the Google key)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
