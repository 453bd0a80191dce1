"""
Logging setup for the relay.

Two renderings of the same records:
    • JSON lines in production, one object per record, with the request
      context and alert fields promoted to top-level keys
    • a coloured single line in development, tagged with the request id
      and the alert id when a record carries one

Phone numbers are personal data. Call sites log them through
``mask_phone``; ``PhoneRedactingFilter`` sits on the handler and masks
any mobile number that still reaches a rendered message, e.g. from a
third-party library or an exception text.

Usage:
    from panic_relay.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Alert stored", extra={"alert_id": alert_id})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from panic_relay.app.alerts.phone import mask_phone, normalize_phone
from panic_relay.app.core.config import Settings, settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})

# Attributes callers pass through ``extra=``
ALERT_FIELDS = (
    "alert_id", "recipient_count", "unregistered_count", "push_status",
    "duration_ms", "status_code",
)

# Optional +56, then 9 and eight more digits, possibly split by spaces or dashes
_MOBILE = re.compile(r"(?<![\w-])(?:\+?56[\s-]?)?9(?:[\s-]?\d){8}(?![\w-])")

_NOISY_LOGGERS = ("uvicorn.access", "google", "urllib3", "httpx")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped context; called with no arguments to clear it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def redact_phones(text: str) -> str:
    return _MOBILE.sub(lambda m: mask_phone(normalize_phone(m.group(0)) or m.group(0)), text)


class PhoneRedactingFilter(logging.Filter):
    """Masks mobile numbers in the rendered message. Never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_phones(message)
        if redacted != message:
            record.msg, record.args = redacted, None
        return True


def _alert_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in ALERT_FIELDS if hasattr(record, key)}


class JSONFormatter(logging.Formatter):

    def __init__(self, service: str = "", environment: str = ""):
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            entry["service"] = self.service
            entry["environment"] = self.environment

        entry.update(get_request_context())
        entry.update(_alert_fields(record))

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = {"type": type(exc).__name__, "message": redact_phones(str(exc))}
            entry["where"] = f"{record.module}.{record.funcName}:{record.lineno}"

        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """``12:00:01 INFO     [req-id] [alert] logger: message``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        tags = ""
        request_id = get_request_context().get("request_id")
        if request_id:
            tags += f" [{request_id[:8]}]"
        alert_id = getattr(record, "alert_id", None)
        if alert_id:
            tags += f" [alert {str(alert_id)[:8]}]"

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{tags} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            line += f"\n  {type(exc).__name__}: {redact_phones(str(exc))}"
        return line


def setup_logging(cfg: Optional[Settings] = None) -> None:
    """Install one stdout handler on the root logger."""
    cfg = cfg or settings
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if cfg.is_production:
        handler.setFormatter(JSONFormatter(service=cfg.APP_NAME, environment=cfg.ENVIRONMENT))
    else:
        handler.setFormatter(PrettyFormatter())
    handler.addFilter(PhoneRedactingFilter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
