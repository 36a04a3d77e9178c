"""
Database engine and session management.

Reads DATABASE_URL from environment and provides SQLAlchemy session factory.
"""

import os
from contextlib import contextmanager
from datetime import timezone

from sqlalchemy import create_engine, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

# Default to SQLite for development/testing if DATABASE_URL not set
# Production should point DATABASE_URL at the Postgres database behind the sync tables
_DEFAULT_DATABASE_URL = "sqlite:///./glsync_pdfs.db"

_engine = None
_session_factory = None


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def get_database_url() -> str:
    """
    Get DATABASE_URL from environment or return default.

    Raises:
        ValueError: If DATABASE_URL is explicitly set but empty.
    """
    url = os.environ.get("DATABASE_URL", _DEFAULT_DATABASE_URL)
    if url == "":
        raise ValueError(
            "DATABASE_URL is set but empty. "
            "Either unset it to use default SQLite, or provide a valid database URL."
        )
    return url


def get_engine():
    """Get or create SQLAlchemy engine."""
    global _engine
    if _engine is None:
        database_url = get_database_url()
        kwargs = {"echo": False}
        if database_url.startswith("sqlite"):
            # Batch workers share the engine across threads
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if ":memory:" in database_url:
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        _engine = create_engine(database_url, **kwargs)
    return _engine


def _get_session_factory():
    global _session_factory
    if _session_factory is None:
        engine = get_engine()
        _session_factory = scoped_session(sessionmaker(bind=engine, expire_on_commit=False))
    return _session_factory


def get_session():
    """
    Get a SQLAlchemy session.

    Returns:
        Session: SQLAlchemy session object.

    Raises:
        ValueError: If DATABASE_URL is not configured properly.
    """
    return _get_session_factory()()


@contextmanager
def session_scope():
    """Transaction scope: commit on success, roll back on error, always close."""
    # Independent of the thread-local session so scopes never close each other
    session = _get_session_factory().session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db():
    """
    Initialize database tables.

    Creates all tables defined in models. Should be called once at application startup
    or via migration script.
    """
    from . import models, source_models  # noqa: F401  register tables on Base

    engine = get_engine()
    Base.metadata.create_all(engine)


def reset_db():
    """
    Drop and recreate all tables. USE WITH CAUTION - deletes all data!

    Only for testing/development.
    """
    from . import models, source_models  # noqa: F401

    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)


def dispose_engine():
    """Forget the cached engine and sessions (used when DATABASE_URL changes)."""
    global _engine, _session_factory
    if _session_factory is not None:
        _session_factory.remove()
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
