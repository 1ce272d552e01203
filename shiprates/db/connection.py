"""Database connection management for shiprates.

Synchronous SQLAlchemy access. Async code reaches the database through
``asyncio.to_thread`` around the store methods, so each call opens its own
short-lived session from the factory.

Usage:
    from shiprates.db.connection import create_session_factory, init_db

    factory = create_session_factory("sqlite:///./shiprates.db")
    init_db(factory)
    with session_scope(factory) as db:
        ...
"""

import os
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shiprates.db.models import Base

SessionFactory = Callable[[], Session]


def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL
    2. SHIPRATES_DATABASE_URL
    3. sqlite:///./shiprates.db
    """
    for var in ("DATABASE_URL", "SHIPRATES_DATABASE_URL"):
        value = os.environ.get(var, "").strip()
        if value:
            return value
    return "sqlite:///./shiprates.db"


def create_db_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """Create an engine, enabling foreign keys and WAL for SQLite.

    In-memory SQLite URLs share a single connection so every session sees
    the same database.
    """
    url = database_url or get_database_url()
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            """Enable referential integrity and concurrent readers."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.close()

    return engine


def create_session_factory(
    database_url: str | None = None,
    echo: bool = False,
) -> sessionmaker[Session]:
    """Build a session factory bound to a fresh engine."""
    engine = create_db_engine(database_url, echo=echo)
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def init_db(session_factory: sessionmaker[Session]) -> None:
    """Create all tables. Idempotent."""
    Base.metadata.create_all(bind=session_factory.kw["bind"])


@contextmanager
def session_scope(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """Context manager for database sessions outside of FastAPI.

    Commits on success, rolls back on error, always closes.

    Usage:
        with session_scope(factory) as db:
            analysis = db.get(ShippingAnalysis, analysis_id)
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
