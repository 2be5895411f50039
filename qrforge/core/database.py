"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite in-memory)
- Table definitions for users and usage counters
"""
from typing import Optional, Sequence
from contextlib import contextmanager
from sqlalchemy import create_engine, insert, MetaData, Table, Column, Integer, String, DateTime, Text, Index, ForeignKey, UniqueConstraint
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from qrforge.core.config import settings


logger = logging.getLogger("qrforge")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour
SQLITE_BUSY_TIMEOUT = 30  # seconds

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return False
    return parsed.database in (None, "", ":memory:") or parsed.query.get("mode") == "memory"


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

    if is_memory_sqlite(url):
        # One shared connection so the in-memory database survives across sessions.
        # Sessions share its transaction: tests only, never concurrent writers.
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        connect_args = {}
        if url.startswith("sqlite"):
            # Connection per session; writers wait on the file lock
            connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            connect_args=connect_args,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (tests)."""
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

    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits on clean exit, rolls back on any exception.
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


def insert_if_absent(session, table: Table, index_elements: Sequence[str], **values) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING on the given unique columns.

    Concurrent first writers of the same key both succeed; only one row lands.
    Returns True if this call inserted the row.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing(index_elements=list(index_elements))
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing(index_elements=list(index_elements))
    else:
        stmt = insert(table).values(**values)
    return session.execute(stmt).rowcount == 1


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(func.current_timestamp().select())
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Users table. The identity provider owns credentials; this row carries the
# subscription tier the billing side writes and the usage core reads.
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(128), primary_key=True),
    Column('email', String(320), nullable=True),
    Column('display_name', Text, nullable=True),
    Column('role', String(20), nullable=False, server_default='user'),
    Column('subscription_tier', String(20), nullable=False, server_default='free'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_subscription_tier', 'subscription_tier'),
)

# Usage counters: one row per (user, metered feature).
# total_count is cumulative and never decremented; daily/monthly counts roll
# over when their window start falls behind the current UTC day/month.
usage_counters = Table(
    'usage_counters',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(128), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('feature', String(64), nullable=False),
    Column('total_count', Integer, nullable=False, server_default='0'),
    Column('daily_count', Integer, nullable=False, server_default='0'),
    Column('daily_window_start', DateTime(timezone=True), nullable=False),
    Column('monthly_count', Integer, nullable=False, server_default='0'),
    Column('monthly_window_start', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'feature', name='uq_usage_counters_user_feature'),
    Index('idx_usage_counters_user', 'user_id'),
)
