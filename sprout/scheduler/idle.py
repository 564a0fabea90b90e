"""IdleSessionSweeper: completes sessions the client never closed."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from sprout.config import settings

if TYPE_CHECKING:
    from sprout.engine.turn import SessionEngine

logger = logging.getLogger(__name__)

JOB_ID = "idle-session-sweep"


class IdleSessionSweeper:
    """Runs an APScheduler interval job that completes idle active sessions.

    Args:
        engine: Completion goes through ``SessionEngine.finish_session`` so
            idle and explicit completion behave the same.
        idle_minutes: Minutes since the last message before a session is idle.
        interval_minutes: How often to sweep.
        timezone: IANA timezone string (default from settings).
    """

    def __init__(
        self,
        engine: SessionEngine,
        idle_minutes: int | None = None,
        interval_minutes: int | None = None,
        timezone: str | None = None,
    ) -> None:
        self._engine = engine
        self._idle_minutes = idle_minutes or settings.session_idle_minutes
        self._interval_minutes = interval_minutes or settings.idle_sweep_interval_minutes
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        self._scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(minutes=self._interval_minutes, timezone=self._timezone),
            id=JOB_ID,
            name="Complete idle sessions",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Idle sweeper started (idle after %d min, every %d min)",
            self._idle_minutes,
            self._interval_minutes,
        )

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Idle sweeper stopped")

    # -- Job -------------------------------------------------------------------

    async def sweep(self) -> int:
        """Complete every idle session; returns how many were completed."""
        child_ids = await self._engine.sessions.idle_child_ids(self._idle_minutes)
        completed = 0
        for child_id in child_ids:
            try:
                session = await self._engine.finish_session(child_id)
            except Exception:
                logger.exception("Idle completion failed for child %s", child_id)
                continue
            if session is not None:
                completed += 1
        if completed:
            logger.info("Idle sweep completed %d session(s)", completed)
        return completed
