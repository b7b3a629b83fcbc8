import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import insert

from mockinterview.core.config import settings
from mockinterview.core.database import audit_events, get_db_session, get_database_url, utc_now
from mockinterview.core.logging import get_request_id

logger = logging.getLogger(__name__)

_memory_events: List[Dict[str, Any]] = []  # Fallback buffer when DB is unavailable


def _safe_truncate(value: Any, limit: int = 500):
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def record_audit_event(
    *,
    action: str,
    user_id: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> None:
    """Record an audit event to the database (or fallback buffer).

    Notes:
    - Respects AUDIT_ENABLED.
    - Metadata values are truncated; never pass secrets.
    - Write failures are logged and buffered, not raised.
    """

    if not settings.AUDIT_ENABLED:
        return

    safe_metadata = None
    if metadata:
        safe_metadata = {
            k: v if isinstance(v, (int, float, bool)) or v is None else _safe_truncate(v)
            for k, v in metadata.items()
        }

    record = {
        "ts": utc_now(),
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "action": action,
        "metadata": safe_metadata,
    }

    if not get_database_url():
        _memory_events.append(record)
        logger.debug("Audit event buffered in memory (no DB configured)")
        return

    try:
        with get_db_session() as session:
            session.execute(insert(audit_events).values(**record))
    except Exception as exc:
        logger.warning(f"Audit event write failed: {exc}")
        _memory_events.append(record)


def get_buffered_audit_events() -> List[Dict[str, Any]]:
    return list(_memory_events)


def clear_buffered_audit_events() -> None:
    _memory_events.clear()
