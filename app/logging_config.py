"""
Structured logging configuration.
Outputs JSON in production so the hosting platform can index log fields.
Outputs plain text in development for readability.
Processor credentials are masked before any handler sees them.
"""

import re
import sys
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict

from app.config import settings

# Mercado Pago access/refresh tokens and OAuth codes
TOKEN_PATTERN = re.compile(r"\b(APP_USR|TEST|TG)-[A-Za-z0-9-]+")


def mask_tokens(text: str) -> str:
    return TOKEN_PATTERN.sub(lambda m: f"{m.group(1)}-***", text)


class TokenRedactingFilter(logging.Filter):
    """Rewrite records so no processor credential reaches a log sink."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_tokens(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """Format logs as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "app": settings.app_name,
            "env": settings.app_env,
        }

        if record.exc_info:
            log_obj["exception"] = mask_tokens(self.formatException(record.exc_info))

        # Correlation ids (payment_id, preference_id, event_id) via extra={"extra": {...}}
        if hasattr(record, "extra"):
            log_obj.update(record.extra)  # type: ignore

        return json.dumps(log_obj, ensure_ascii=False)


def configure_logging():
    """Configure root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO if settings.is_production else logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(TokenRedactingFilter())

    if settings.is_production:
        console_handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        console_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # httpx logs full request URLs, which carry OAuth codes on the token exchange
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)
