# mockinterview/conftest.py
import os

# Configure before any mockinterview module reads settings
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("ENV", "test")

import pytest
from sqlalchemy import select

from mockinterview.core.config import settings
from mockinterview.core.database import (
    create_all_tables,
    dispose_engine,
    get_db_session,
    orders,
    interview_sessions,
)
from mockinterview.features.audit.service import clear_buffered_audit_events
from mockinterview.features.packs.service import seed_packs
from mockinterview.features.users.service import sync_user
from mockinterview.models.user import Identity


@pytest.fixture(scope="function", autouse=True)
def reset_db(monkeypatch):
    """
    Fresh in-memory database per test, with the default pack catalog seeded.
    """
    monkeypatch.setenv("TEST_DATABASE_URL", "sqlite://")
    monkeypatch.setattr(settings, "AUDIT_ENABLED", True)
    monkeypatch.setattr(settings, "AUTH_ALLOW_USER_HEADER", True)
    monkeypatch.setattr(settings, "CLERK_SECRET_KEY", None)

    dispose_engine()
    create_all_tables()
    seed_packs()
    clear_buffered_audit_events()
    yield
    dispose_engine()


@pytest.fixture
def make_user():
    """Create (or sync) a user from an identity."""
    def _make(user_id: str = "user_alice", email: str = "alice@example.com", name: str = "Alice"):
        return sync_user(Identity(id=user_id, email=email, name=name))
    return _make


@pytest.fixture
def fetch_orders():
    def _fetch(user_id: str):
        with get_db_session() as session:
            return session.execute(
                select(orders).where(orders.c.user_id == user_id).order_by(orders.c.created_at, orders.c.id)
            ).fetchall()
    return _fetch


@pytest.fixture
def fetch_sessions():
    def _fetch(user_id: str):
        with get_db_session() as session:
            return session.execute(
                select(interview_sessions)
                .where(interview_sessions.c.user_id == user_id)
                .order_by(interview_sessions.c.created_at, interview_sessions.c.id)
            ).fetchall()
    return _fetch
