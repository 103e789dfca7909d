"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • Request-scoped context (request_id, client_ip, endpoint, user_id)
    • Domain extras (alert / check-in / report ids, fan-out outcome)
    • Redaction of phone numbers and e-mail addresses

═══════════════════════════════════════════════════════════════════════════
PRIVACY
═══════════════════════════════════════════════════════════════════════════

Trusted contacts and profiles carry phone numbers and e-mail addresses,
and incident reports may be anonymous. Two rules keep that out of logs:

    1. SensitiveDataFilter masks anything shaped like a phone number or
       an e-mail address in the rendered message and in string extras.
    2. suppress_identity() removes the caller from the request context
       for the rest of the request (anonymous report submission).

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Alert activated", extra={"user_id": uid, "alert_id": aid})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Extra attributes copied into JSON log entries when present on a record
EXTRA_FIELDS = (
    "user_id", "alert_id", "alert_type", "check_in_id", "report_id",
    "contact_id", "status", "fanout_mode", "recipient_count",
    "duration_ms", "status_code", "endpoint",
)

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
# International (+…) or a bare run of 8+ digits; ISO dates and uuids do not match
_PHONE_RE = re.compile(r"(?<![\w-])(?:\+\d[\d\s-]{6,}\d|\d{8,})(?![\w-])")


def redact(text: str) -> str:
    """Mask e-mail addresses and phone numbers, keeping the last two digits."""
    text = _EMAIL_RE.sub("<email>", text)
    return _PHONE_RE.sub(lambda m: "<phone…" + re.sub(r"\D", "", m.group())[-2:] + ">", text)


# ── Request context ──

def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped log context (call from middleware)."""
    _request_context.set(kwargs)


def bind_context(**kwargs: Any) -> None:
    """Add keys to the current request context."""
    _request_context.set({**_request_context.get(), **kwargs})


def suppress_identity() -> None:
    """Drop the caller's identity from the context for the rest of the request."""
    ctx = {k: v for k, v in _request_context.get().items() if k != "user_id"}
    ctx["anonymous"] = True
    _request_context.set(ctx)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


class SensitiveDataFilter(logging.Filter):
    """Rewrites records in place so no handler ever sees raw contact details."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg, record.args = cleaned, ()
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if isinstance(value, str):
                setattr(record, key, redact(value))
        return True


# ── Formatters ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": settings.APP_NAME,
            "environment": settings.ENVIRONMENT,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        ctx = get_request_context()
        if ctx:
            entry["context"] = ctx
            if ctx.get("anonymous"):
                # Per-record ids must not re-identify an anonymous caller
                record.__dict__.pop("user_id", None)

        entry.update({k: getattr(record, k) for k in EXTRA_FIELDS if hasattr(record, k)})

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": redact(str(record.exc_info[1])),
            }

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured console format; shows short request and alert ids."""

    COLORS = {
        "DEBUG":    "\033[36m",
        "INFO":     "\033[32m",
        "WARNING":  "\033[33m",
        "ERROR":    "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ctx = get_request_context()

        tags = []
        if ctx.get("request_id"):
            tags.append(ctx["request_id"][:8])
        if ctx.get("anonymous"):
            tags.append("anon")
        elif ctx.get("user_id"):
            tags.append(f"u:{ctx['user_id'][:8]}")
        if getattr(record, "alert_id", None):
            tags.append(f"a:{record.alert_id[:8]}")
        tag_str = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{tag_str} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ── Setup ──

def setup_logging() -> None:
    """Install one stdout handler on the root logger, formatted per environment."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
