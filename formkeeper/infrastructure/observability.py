"""Structured Logging — JSON formatter and setup for production observability.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Extra fields (session_id, field_name, error_code, outcome, phase) surfaced when present
    - A FormKeeperError passed as exc_info fills in its code, category, severity
      and context ids unless the call site already set them
    - JSON format in production, human-readable in development

Design Decisions:
    - JSONFormatter over third-party libs: zero dependencies, full control
    - setup_logging called once by the host application on startup
"""

import logging
import json
from datetime import datetime, timezone

from formkeeper.config import get_settings
from formkeeper.core.errors import FormKeeperError

_EXTRA_KEYS = (
    "session_id", "field_name", "error_code", "outcome", "phase",
    "delay_ms",
)


def _error_fields(error: FormKeeperError) -> dict:
    return {
        "error_code": error.code,
        "category": error.category.value,
        "severity": error.severity.value,
        "session_id": error.context.session_id,
        "field_name": error.context.field_name,
    }


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            error = record.exc_info[1]
            if isinstance(error, FormKeeperError):
                for key, val in _error_fields(error).items():
                    if val is not None:
                        log.setdefault(key, val)
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None, fmt: str | None = None) -> logging.Handler:
    """Configure root logging from arguments or Settings. Returns the installed handler."""
    settings = get_settings()
    level = level or settings.log_level
    fmt = fmt or settings.log_format
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s - %(message)s",
        ))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
