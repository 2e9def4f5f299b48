"""Database engine and session wiring."""

from __future__ import annotations

import sqlite3
from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hirechat.core.settings import settings

_IN_MEMORY_SQLITE = ("sqlite://", "sqlite:///:memory:")


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Model modules register their tables on Base.metadata.
import hirechat.models  # noqa: E402,F401


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection.
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str | None = None) -> Engine:
    """Create an engine for ``url`` (defaults to the configured database).

    In-memory SQLite shares one connection so every session sees the same data.
    """
    url = url or settings.effective_database_url
    options: dict[str, Any] = {"echo": settings.sql_debug}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if url in _IN_MEMORY_SQLITE:
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
    return create_engine(url, **options)


engine = build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
