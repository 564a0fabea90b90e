"""Tests for IdleSessionSweeper: scheduled completion of idle sessions."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sprout.db import connect
from sprout.engine.turn import SessionEngine
from sprout.scheduler.idle import JOB_ID, IdleSessionSweeper
from sprout.sessions.models import COMPLETED


@pytest.fixture(autouse=True)
def _llm():
    with patch("sprout.llm.client.complete_text", AsyncMock(return_value="{}")):
        yield


@pytest.fixture
def engine(db_path: Path) -> SessionEngine:
    return SessionEngine.create(db_path=db_path)


async def _age_session(db_path: Path, session_id: str, minutes: int) -> None:
    stamp = (datetime.now(UTC) - timedelta(minutes=minutes)).isoformat()
    async with connect(db_path) as db:
        await db.execute(
            "UPDATE therapy_sessions SET updated_at = ? WHERE id = ?", (stamp, session_id)
        )
        await db.commit()


async def test_sweep_completes_idle_sessions(engine: SessionEngine, db_path: Path) -> None:
    idle = await engine.sessions.append_turn("child-1", "hi", "hello")
    await engine.sessions.append_turn("child-2", "hi", "hello")
    await _age_session(db_path, idle.id, 40)

    with patch("sprout.engine.turn.remember_session", AsyncMock()) as remember:
        completed = await IdleSessionSweeper(engine, idle_minutes=30).sweep()
        await engine.drain()

    assert completed == 1
    assert (await engine.sessions.get_session(idle.id)).status == COMPLETED
    assert await engine.sessions.count_active("child-2") == 1
    remember.assert_awaited_once()


async def test_sweep_with_nothing_idle(engine: SessionEngine) -> None:
    assert await IdleSessionSweeper(engine, idle_minutes=30).sweep() == 0


async def test_sweep_continues_after_failure() -> None:
    engine = MagicMock()
    engine.sessions.idle_child_ids = AsyncMock(return_value=["a", "b"])
    engine.finish_session = AsyncMock(side_effect=[RuntimeError("db"), MagicMock()])

    assert await IdleSessionSweeper(engine, idle_minutes=30).sweep() == 1
    assert engine.finish_session.await_count == 2


async def test_start_and_stop() -> None:
    sweeper = IdleSessionSweeper(MagicMock(), interval_minutes=5, timezone="UTC")
    await sweeper.start()
    try:
        assert sweeper.running
        job = sweeper._scheduler.get_job(JOB_ID)
        assert job is not None
        assert job.max_instances == 1
    finally:
        await sweeper.stop()
    assert not sweeper.running
