"""Async database connection abstraction over libsql.

Provides a thin async wrapper around the synchronous ``libsql`` driver using
``asyncio.to_thread()``.  Connection target is determined by settings:

- **Production**: ``TURSO_DATABASE_URL`` + ``TURSO_AUTH_TOKEN`` → remote Turso
- **Dev/test**: no Turso env vars → local SQLite file via ``database_path``

Family and child rows are written by the account services; this package only
reads them.  ``therapy_sessions`` and ``child_activity`` are owned here.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

import libsql

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

from sprout.config import settings

SCHEMA: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS families (
        id                  TEXT PRIMARY KEY,
        subscription_tier   TEXT NOT NULL DEFAULT 'free',
        subscription_status TEXT NOT NULL DEFAULT 'inactive'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS children (
        id                 TEXT PRIMARY KEY,
        family_id          TEXT NOT NULL,
        name               TEXT NOT NULL DEFAULT '',
        age                INTEGER,
        gender             TEXT NOT NULL DEFAULT '',
        current_concerns   TEXT NOT NULL DEFAULT '',
        triggers           TEXT NOT NULL DEFAULT '',
        parent_goals       TEXT NOT NULL DEFAULT '',
        reason_for_adding  TEXT NOT NULL DEFAULT '',
        background         TEXT NOT NULL DEFAULT '',
        family_dynamics    TEXT NOT NULL DEFAULT '',
        social_situation   TEXT NOT NULL DEFAULT '',
        school_info        TEXT NOT NULL DEFAULT '',
        coping_strategies  TEXT NOT NULL DEFAULT '',
        previous_therapy   TEXT NOT NULL DEFAULT '',
        interests          TEXT NOT NULL DEFAULT '',
        emergency_contacts TEXT NOT NULL DEFAULT '',
        profile_completed  INTEGER NOT NULL DEFAULT 0,
        is_active          INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS therapy_sessions (
        id               TEXT PRIMARY KEY,
        child_id         TEXT NOT NULL,
        messages         TEXT NOT NULL DEFAULT '[]',
        mood_analysis    TEXT,
        topics           TEXT NOT NULL DEFAULT '[]',
        status           TEXT NOT NULL DEFAULT 'active',
        crisis_detected  INTEGER NOT NULL DEFAULT 0,
        session_duration INTEGER,
        analyzed_count   INTEGER NOT NULL DEFAULT 0,
        created_at       TEXT NOT NULL,
        updated_at       TEXT NOT NULL,
        completed_at     TEXT
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS one_active_session_per_child
        ON therapy_sessions (child_id) WHERE status = 'active'
    """,
    """
    CREATE INDEX IF NOT EXISTS therapy_sessions_child_created
        ON therapy_sessions (child_id, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS child_activity (
        child_id                      TEXT PRIMARY KEY,
        last_session_at               TEXT NOT NULL,
        last_session_had_conversation INTEGER NOT NULL
    )
    """,
)


class _AsyncCursor:
    """Thin async wrapper around a synchronous libsql cursor."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class _AsyncConnection:
    """Thin async wrapper around a synchronous libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> _AsyncCursor:
        cursor = await asyncio.to_thread(self._conn.execute, sql, params)
        return _AsyncCursor(cursor)

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open_local(path: str) -> Any:
    """Open a local libsql connection with WAL mode and busy timeout."""
    conn = libsql.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


async def get_connection(local_path_override: Path | None = None) -> _AsyncConnection:
    """Return an async-wrapped libsql connection.

    If *local_path_override* is given (test isolation), it takes priority.
    Otherwise, ``TURSO_DATABASE_URL`` triggers a remote connection, and
    ``database_path`` falls back to a local file.
    """
    if local_path_override:
        local_path_override.parent.mkdir(parents=True, exist_ok=True)
        conn = await asyncio.to_thread(_open_local, str(local_path_override))
        return _AsyncConnection(conn)

    if settings.turso_database_url:
        conn = await asyncio.to_thread(
            libsql.connect,
            database=settings.turso_database_url,
            auth_token=settings.turso_auth_token,
        )
        return _AsyncConnection(conn)

    # Local file fallback
    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    conn = await asyncio.to_thread(_open_local, str(settings.database_path))
    return _AsyncConnection(conn)


async def ensure_schema(db: _AsyncConnection) -> None:
    """Create every table and index this service reads or writes."""
    for statement in SCHEMA:
        await db.execute(statement)
    await db.commit()


@contextlib.asynccontextmanager
async def connect(local_path_override: Path | None = None) -> AsyncIterator[_AsyncConnection]:
    """Open a connection, close it on exit."""
    db = await get_connection(local_path_override=local_path_override)
    try:
        yield db
    finally:
        await db.close()
