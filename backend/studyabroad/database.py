"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides the
small helpers used by the application, scripts and tests.
"""

from datetime import datetime, timezone

from sqlmodel import SQLModel, create_engine, Session

from .config import settings

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args)


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo on the way back anyway."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    from . import models  # noqa: F401  registers the table metadata
    SQLModel.metadata.create_all(engine)


def open_session() -> Session:
    """A session whose objects stay loaded after commit.

    Services commit several times per call (saves, notifications) and then
    serialize rows they already hold, so attributes must not be expired.
    """
    return Session(engine, expire_on_commit=False)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with open_session() as session:
        yield session
