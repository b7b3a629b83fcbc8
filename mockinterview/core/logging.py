"""
Structured logging for the interview backend.

Services log with `extra={"user_id": ..., "pack_id": ..., "order_id": ...,
"session_id": ...}`. Both formatters surface those fields: the JSON formatter
as top-level keys (production), the pretty formatter as a compact
`key=value` suffix (development), so an entitlement trail can be followed
per order or per session without parsing message text.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOGGER_NAME = "mockinterview"

# Entitlement identifiers, shown in both formats
_ENTITY_FIELDS = ("user_id", "pack_id", "order_id", "session_id")

# Request and error metadata, JSON only
_META_FIELDS = ("event_type", "error_code", "status", "path", "method", "latency_bucket")

_LATENCY_BUCKETS = (
    (10, "<10ms"),
    (100, "10-100ms"),
    (500, "100-500ms"),
    (1000, "500-1000ms"),
)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        for field in _ENTITY_FIELDS + _META_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_timestamp(record), record.levelname, record.name]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"rid={rid}")
        parts.append(record.getMessage())
        context = " ".join(
            f"{field[:-3]}={getattr(record, field)}"
            for field in _ENTITY_FIELDS
            if getattr(record, field, None) is not None
        )
        if context:
            parts.append(f"({context})")
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: int = logging.INFO) -> None:
    """Install one stdout handler on the service logger (idempotent)."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True


def _truncate(value: Any, limit: int = 500) -> Any:
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    text = str(value)
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    event_type: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    **context: Optional[str],
) -> None:
    """Log `msg` on the service logger with entity context and truncated extras.

    Usage:
        log_event("info", "interview.turn", user_id=uid, session_id=sid,
                  event_type="interview.turn", extra={"audio_bytes": n})
    """
    payload: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
    if event_type:
        payload["event_type"] = event_type
    for key, value in (extra or {}).items():
        payload[key] = _truncate(value)
    logger = logging.getLogger(LOGGER_NAME)
    getattr(logger, level, logger.info)(msg, extra=payload)
