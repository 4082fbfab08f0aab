"""Structured logging and the transaction audit sink."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from settings import settings

_LOGGER_NAME = "festivo"
_AUDIT_LOGGER_NAME = "festivo.audit"

_SENSITIVE_KEYWORDS = ("password", "token", "secret", "authorization")

_RESERVED_ATTRS = {
    "args",
    "msg",
    "name",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "process",
    "processName",
    "message",
    "taskName",
}


def _sanitize_field(key: str, value: Any) -> Any:
    lowered = key.lower()
    if any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS):
        return "[redacted]"
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class JSONLogFormatter(logging.Formatter):
    """Emit logs as JSON objects with structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "msg": record.getMessage(),
            "logger": record.name,
            "service": settings.service_name,
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = _sanitize_field(key, value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging() -> logging.Logger:
    """Configure the root logger with JSON output."""
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONLogFormatter())
    root.addHandler(handler)
    root.setLevel(settings.log_level)
    return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or _LOGGER_NAME)


audit_logger = get_logger(_AUDIT_LOGGER_NAME)
request_logger = get_logger("festivo.request")


def _daily_log_path(log_dir: str) -> Path:
    return Path(log_dir) / f"{datetime.now().strftime('%Y-%m-%d')}.log"


def _append_line(entry: Dict[str, Any]) -> None:
    path = _daily_log_path(settings.log_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(entry, default=str) + "\n")


def log_transaction(action: str, user_id: Optional[Any], **metadata: Any) -> None:
    """Record a mutating action. Never raises."""
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "type": "transaction",
        "action": action,
        "user_id": str(user_id) if user_id else None,
    }
    entry.update({key: _sanitize_field(key, value) for key, value in metadata.items()})
    try:
        audit_logger.info("transaction", extra={"transaction": entry})
        if settings.log_dir:
            _append_line(entry)
    except Exception:
        get_logger().warning("audit sink failed for %s", action, exc_info=True)


def log_request(method: str, path: str, status: int, duration_ms: float, user_id: Optional[str] = None) -> None:
    request_logger.info(
        "request",
        extra={
            "method": method,
            "path": path,
            "status": status,
            "duration_ms": round(duration_ms, 2),
            "user_id": user_id,
        },
    )
