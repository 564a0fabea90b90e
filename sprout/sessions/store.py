"""SessionStore: therapy session persistence via libsql.

Owns the one-active-session-per-child invariant.  Every mutation for a
child runs under that child's lock; the lock is released before any model
call (transcript re-analysis happens after the write and is applied only
if no newer analysis has landed in between).

Write transactions from one store are serialized by a store-wide lock.
SQLite allows a single writer, and a deferred transaction that reads and
then writes fails with "database is locked" if another connection
committed in between.  Reads take no lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sprout.db import ensure_schema, get_connection
from sprout.results import SessionNotActive
from sprout.sessions.models import (
    ACTIVE,
    ASSISTANT,
    CHILD,
    COMPLETED,
    Message,
    Session,
    make_session_id,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sprout.analysis.mood import MoodAnalyzer, TurnAnalysis

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 5


class KeyedLocks:
    """One asyncio.Lock per key, discarded when nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


def _now() -> datetime:
    return datetime.now(UTC)


def _elapsed_minutes(created_at: str, until: datetime) -> int:
    try:
        started = datetime.fromisoformat(created_at)
    except ValueError:
        return 0
    if started.tzinfo is None:
        started = started.replace(tzinfo=UTC)
    return max(0, math.ceil((until - started).total_seconds() / 60))


class SessionStore:
    """Persists therapy sessions in SQLite / Turso.

    Args:
        db_path: Explicit local database file (test isolation).
        analyzer: Used to re-score the full transcript after each append.
            When omitted, appends leave mood/topics untouched unless an
            analysis is passed in.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        analyzer: MoodAnalyzer | None = None,
    ) -> None:
        self._db_path = db_path
        self._analyzer = analyzer
        self._initialised = False
        self._locks = KeyedLocks()
        self._write_lock = asyncio.Lock()

    # -- Internal helpers ------------------------------------------------------

    async def _ensure_schema(self, db) -> None:  # noqa: ANN001
        """Create tables on first use. Caller holds the write lock."""
        if not self._initialised:
            await ensure_schema(db)
            self._initialised = True

    async def _connect(self):  # noqa: ANN201
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            async with self._write_lock:
                await self._ensure_schema(db)
        return db

    @contextlib.asynccontextmanager
    async def _writing(self) -> AsyncIterator:
        """Connection for one write transaction, held under the write lock."""
        async with self._write_lock:
            db = await get_connection(local_path_override=self._db_path)
            try:
                await self._ensure_schema(db)
                yield db
            finally:
                await db.close()

    @staticmethod
    async def _fetch_active(db, child_id: str) -> Session | None:  # noqa: ANN001
        cursor = await db.execute(
            "SELECT * FROM therapy_sessions WHERE child_id = ? AND status = ?",
            (child_id, ACTIVE),
        )
        row = await cursor.fetchone()
        return Session.from_row(row) if row else None

    @staticmethod
    async def _fetch(db, session_id: str) -> Session | None:  # noqa: ANN001
        cursor = await db.execute("SELECT * FROM therapy_sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        return Session.from_row(row) if row else None

    @staticmethod
    async def _insert(db, session: Session) -> None:  # noqa: ANN001
        await db.execute(
            """
            INSERT INTO therapy_sessions
                (id, child_id, messages, mood_analysis, topics, status, crisis_detected,
                 session_duration, analyzed_count, created_at, updated_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            session.to_row(),
        )

    @staticmethod
    async def _write_messages(db, session: Session) -> int:  # noqa: ANN001
        row = session.to_row()
        cursor = await db.execute(
            """
            UPDATE therapy_sessions
            SET messages = ?, crisis_detected = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (row[2], row[6], session.updated_at, session.id, ACTIVE),
        )
        return cursor.rowcount

    async def _append(self, child_id: str, messages: list[Message], crisis: bool) -> Session:
        """Get-or-create the active session and append *messages*. Caller holds the lock."""
        async with self._writing() as db:
            session = await self._fetch_active(db, child_id)
            if session is None:
                session = Session(
                    id=make_session_id(),
                    child_id=child_id,
                    messages=list(messages),
                    crisis_detected=crisis,
                )
                await self._insert(db, session)
                logger.info("Opened session %s for child %s", session.id, child_id)
            else:
                session.messages.extend(messages)
                session.crisis_detected = session.crisis_detected or crisis
                session.updated_at = _now().isoformat()
                await self._write_messages(db, session)
            await db.commit()
            return session

    async def _apply_analysis(
        self, session: Session, analysis: TurnAnalysis | None
    ) -> Session:
        """Store *analysis* (or re-score the transcript) for *session*."""
        if analysis is None:
            if self._analyzer is None:
                return session
            analysis = await self._analyzer.analyze(session.child_text(), use_cache=False)

        count = len(session.messages)
        async with self._writing() as db:
            cursor = await db.execute(
                """
                UPDATE therapy_sessions
                SET mood_analysis = ?, topics = ?, analyzed_count = ?
                WHERE id = ? AND analyzed_count <= ?
                """,
                (
                    analysis.mood.model_dump_json(),
                    json.dumps(analysis.topics),
                    count,
                    session.id,
                    count,
                ),
            )
            await db.commit()
            if cursor.rowcount:
                session.mood = analysis.mood
                session.topics = list(analysis.topics)
                session.analyzed_count = count
            return session

    # -- Turns -----------------------------------------------------------------

    async def append_turn(
        self,
        child_id: str,
        user_text: str,
        assistant_text: str,
        *,
        crisis: bool = False,
        analysis: TurnAnalysis | None = None,
    ) -> Session:
        """Append a child message and its reply to the child's active session.

        Creates the session when none is active.  Mood and topics are then
        recomputed over the whole transcript unless *analysis* is supplied.
        Records last activity with ``had_conversation=True``.
        """
        turn = [
            Message(sender=CHILD, content=user_text),
            Message(sender=ASSISTANT, content=assistant_text),
        ]
        async with self._locks.hold(child_id):
            session = await self._append(child_id, turn, crisis)
        session = await self._apply_analysis(session, analysis)
        await self.record_activity(child_id, had_conversation=True)
        return session

    async def append_child_message(
        self, child_id: str, content: str, *, crisis: bool = False
    ) -> Session:
        """Append a lone child message (realtime voice), creating the session if needed."""
        async with self._locks.hold(child_id):
            session = await self._append(child_id, [Message(sender=CHILD, content=content)], crisis)
        session = await self._apply_analysis(session, None)
        await self.record_activity(child_id, had_conversation=True)
        return session

    async def append_assistant_message(
        self, child_id: str, session_id: str, content: str
    ) -> Session:
        """Append an assistant message to a specific session.

        Raises:
            SessionNotActive: The session does not exist, belongs to another
                child, or has been completed.
        """
        async with self._locks.hold(child_id), self._writing() as db:
            session = await self._fetch(db, session_id)
            if session is None or session.child_id != child_id or not session.is_active:
                raise SessionNotActive("Session is not active")
            session.messages.append(Message(sender=ASSISTANT, content=content))
            session.updated_at = _now().isoformat()
            await self._write_messages(db, session)
            await db.commit()
        session = await self._apply_analysis(session, None)
        await self.record_activity(child_id, had_conversation=True)
        return session

    # -- Completion ------------------------------------------------------------

    async def complete_active(
        self, child_id: str, duration_minutes: int | None = None
    ) -> Session | None:
        """Mark the child's active session completed.

        Stamps *duration_minutes*, or the minutes elapsed since creation.
        With no active session this only records last activity with
        ``had_conversation=False`` and returns None.
        """
        async with self._locks.hold(child_id), self._writing() as db:
            session = await self._fetch_active(db, child_id)
            if session is not None:
                now = _now()
                if duration_minutes is None:
                    duration_minutes = _elapsed_minutes(session.created_at, now)
                session.status = COMPLETED
                session.duration_minutes = duration_minutes
                session.completed_at = now.isoformat()
                session.updated_at = session.completed_at
                await db.execute(
                    """
                    UPDATE therapy_sessions
                    SET status = ?, session_duration = ?, completed_at = ?, updated_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        COMPLETED,
                        duration_minutes,
                        session.completed_at,
                        session.updated_at,
                        session.id,
                        ACTIVE,
                    ),
                )
                await db.commit()
                logger.info("Completed session %s for child %s", session.id, child_id)

        if session is None:
            await self.record_activity(child_id, had_conversation=False)
        return session

    # -- Reads -----------------------------------------------------------------

    async def get_session(self, session_id: str) -> Session | None:
        db = await self._connect()
        try:
            return await self._fetch(db, session_id)
        finally:
            await db.close()

    async def active_session(self, child_id: str) -> Session | None:
        db = await self._connect()
        try:
            return await self._fetch_active(db, child_id)
        finally:
            await db.close()

    async def count_active(self, child_id: str) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM therapy_sessions WHERE child_id = ? AND status = ?",
                (child_id, ACTIVE),
            )
            row = await cursor.fetchone()
            return row[0] if row else 0
        finally:
            await db.close()

    async def list_sessions(
        self, child_id: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[Session], int]:
        """Return one page of the child's sessions (newest first) and the total count."""
        page = max(1, page)
        page_size = max(1, page_size)
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM therapy_sessions
                WHERE child_id = ?
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
                """,
                (child_id, page_size, (page - 1) * page_size),
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                "SELECT COUNT(*) FROM therapy_sessions WHERE child_id = ?", (child_id,)
            )
            total = await cursor.fetchone()
            return [Session.from_row(row) for row in rows], (total[0] if total else 0)
        finally:
            await db.close()

    async def idle_child_ids(self, idle_minutes: int) -> list[str]:
        """Children whose active session has not changed for *idle_minutes*."""
        cutoff = (_now() - timedelta(minutes=idle_minutes)).isoformat()
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT child_id FROM therapy_sessions WHERE status = ? AND updated_at < ?",
                (ACTIVE, cutoff),
            )
            rows = await cursor.fetchall()
            return [row[0] for row in rows]
        finally:
            await db.close()

    # -- Activity --------------------------------------------------------------

    async def record_activity(self, child_id: str, *, had_conversation: bool) -> None:
        """Stamp the child's last session time and whether it held a conversation."""
        async with self._writing() as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO child_activity
                    (child_id, last_session_at, last_session_had_conversation)
                VALUES (?, ?, ?)
                """,
                (child_id, _now().isoformat(), int(had_conversation)),
            )
            await db.commit()

    async def get_activity(self, child_id: str) -> dict | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM child_activity WHERE child_id = ?", (child_id,)
            )
            row = await cursor.fetchone()
            if not row:
                return None
            return {
                "child_id": row[0],
                "last_session_at": row[1],
                "last_session_had_conversation": bool(row[2]),
            }
        finally:
            await db.close()
