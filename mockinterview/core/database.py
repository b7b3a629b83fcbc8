"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite in-memory via TEST_DATABASE_URL)
- Table definitions for users, packs, orders, sessions and audit events
"""
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, ForeignKey, CheckConstraint
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
import os

from mockinterview.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def utc_now() -> datetime:
    """Timezone-aware UTC now for column defaults."""
    return datetime.now(timezone.utc)


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Drop the cached engine so the next call re-reads the database URL."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Everything executed inside the block commits together or not at all.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


# Users synced from the identity provider
users = Table(
    'users',
    metadata,
    Column('id', String(100), primary_key=True),  # provider subject
    Column('email', String(255), nullable=True, index=True),
    Column('name', Text, nullable=True),
    Column('image', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
)

# Bonus credits granted at signup
user_credits = Table(
    'user_credits',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('users.id'), nullable=False, index=True),
    Column('amount', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)

# Interview pack catalog (read-only reference data)
interview_packs = Table(
    'interview_packs',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('title', String(200), nullable=False),
    Column('role', String(100), nullable=False),
    Column('level', String(50), nullable=False),
    Column('duration_minutes', Integer, nullable=False),
    Column('price', Integer, nullable=False, server_default='0'),
    Column('description', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
)

# Orders: one row per purchase, bounded attempts
orders = Table(
    'orders',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('users.id'), nullable=False),
    Column('pack_id', String(100), ForeignKey('interview_packs.id'), nullable=False),
    Column('amount', Integer, nullable=False),
    Column('status', String(50), nullable=False),
    Column('attempts_used', Integer, nullable=False, server_default='0'),
    Column('attempts_total', Integer, nullable=False),
    # Sessions issued under this order that have not been started yet
    Column('attempts_reserved', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    CheckConstraint('attempts_used + attempts_reserved <= attempts_total', name='ck_orders_attempts_within_total'),
    CheckConstraint('attempts_used >= 0 AND attempts_reserved >= 0', name='ck_orders_attempts_non_negative'),
    # Eligibility lookup: (user_id, pack_id, status)
    Index('idx_orders_user_pack_status', 'user_id', 'pack_id', 'status'),
    Index('idx_orders_created_at', 'created_at'),
)

# Interview sessions: one per attempt
interview_sessions = Table(
    'interview_sessions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('users.id'), nullable=False),
    Column('pack_id', String(100), ForeignKey('interview_packs.id'), nullable=False),
    Column('order_id', String(36), ForeignKey('orders.id'), nullable=True, index=True),
    Column('status', String(50), nullable=False),
    Column('is_practice', Boolean, nullable=False, server_default='false'),
    Column('started_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Index('idx_interview_sessions_user_pack', 'user_id', 'pack_id'),
    Index('idx_interview_sessions_status', 'status'),
)

# Audit events (best-effort analytics trail)
audit_events = Table(
    'audit_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('ts', DateTime(timezone=True), nullable=False, index=True),
    Column('request_id', String(100), nullable=True),
    Column('user_id', String(100), nullable=True, index=True),
    Column('action', String(100), nullable=False, index=True),
    Column('metadata', JSON, nullable=True),
    Index('idx_audit_events_user_action', 'user_id', 'action'),
)
