"""
Health and readiness endpoints.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from mockinterview.core.database import get_engine

logger = logging.getLogger("mockinterview")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "users",
    "interview_packs",
    "orders",
    "interview_sessions",
    "audit_events",
]


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    try:
        engine = get_engine()
        present = set(inspect(engine).get_table_names())
    except Exception as exc:
        logger.warning(f"readyz: database unavailable: {exc}")
        return JSONResponse(status_code=503, content={"status": "unavailable", "missing_tables": REQUIRED_TABLES})

    missing = [t for t in REQUIRED_TABLES if t not in present]
    if missing:
        return JSONResponse(status_code=503, content={"status": "degraded", "missing_tables": missing})
    return {"status": "ready", "missing_tables": []}
