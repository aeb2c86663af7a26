"""Common helpers for storage repositories."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def sqlite_url(db_path: Path) -> str:
    """SQLAlchemy URL for a SQLite database file."""

    return f"sqlite:///{db_path}"


def is_sqlite_url(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def build_engine(*, database_url: str, busy_timeout_ms: int = 5000) -> Engine:
    """Build SQLAlchemy engine with a consistent per-backend policy."""

    if is_sqlite_url(database_url):
        return build_sqlite_engine(database_url=database_url, busy_timeout_ms=busy_timeout_ms)
    return create_engine(database_url, pool_pre_ping=True)


def build_sqlite_engine(*, database_url: str, busy_timeout_ms: int) -> Engine:
    """Build SQLAlchemy engine with consistent SQLite policy."""

    engine = create_engine(
        database_url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    pragmas = _sqlite_pragmas(busy_timeout_ms)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: sqlite3.Connection, _: object) -> None:
        for pragma in pragmas:
            dbapi_connection.execute(pragma)

    return engine


def to_db_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _sqlite_pragmas(busy_timeout_ms: int) -> tuple[str, ...]:
    """Statements applied to every new SQLite connection."""

    return (
        "PRAGMA journal_mode = WAL",
        f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}",
        "PRAGMA foreign_keys = ON",
    )
