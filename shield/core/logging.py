"""Central logging configuration for the service.

Logs go to stdout. Configuration is driven by environment variables so it
works before typed Settings are available (e.g. during early imports).
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from datetime import UTC, datetime
from typing import Any

# Structured extras attached by the session scheduler, OTP gate and middleware.
_EXTRA_KEYS = (
    "effect",
    "user_id",
    "attempt",
    "route",
    "otp_mode",
    "method",
    "path",
    "query",
    "status_code",
    "duration_ms",
    "client_ip",
    "error_type",
)


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter (no external deps)."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        extras = record.__dict__
        for key in _EXTRA_KEYS:
            if key in extras:
                payload[key] = extras[key]

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    """Configure stdlib logging for the service and uvicorn.

    Env vars:
    - LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO)
    - LOG_JSON: true/false (default: false)
    - LOG_REQUESTS: true/false (default: true); uvicorn access logs are
      silenced while request logging is on.
    """

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json = _env_bool("LOG_JSON", default=False)
    log_requests = _env_bool("LOG_REQUESTS", default=True)

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "text": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            },
            "json": {
                "()": "shield.core.logging.JsonFormatter",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json" if log_json else "text",
                "stream": sys.stdout,
            }
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": {
            "uvicorn": {"level": level, "propagate": True},
            "uvicorn.error": {"level": level, "propagate": True},
            "uvicorn.access": {
                "level": "WARNING" if log_requests else "INFO",
                "propagate": True,
            },
            "httpx": {
                "level": os.getenv("HTTPX_LOG_LEVEL", "WARNING"),
                "propagate": True,
            },
            # Twilio logs full request bodies (phone numbers, codes) at INFO.
            "twilio.http_client": {"level": "WARNING", "propagate": True},
        },
    }

    logging.config.dictConfig(config)
