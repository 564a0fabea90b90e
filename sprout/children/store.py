"""ProfileStore: read-only access to child profiles via libsql."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sprout.children.models import ChildProfile
from sprout.db import ensure_schema, get_connection

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "family_id",
    "name",
    "age",
    "gender",
    "current_concerns",
    "triggers",
    "parent_goals",
    "reason_for_adding",
    "background",
    "family_dynamics",
    "social_situation",
    "school_info",
    "coping_strategies",
    "previous_therapy",
    "interests",
    "emergency_contacts",
    "profile_completed",
    "is_active",
)


class ProfileStore:
    """Reads child profiles from SQLite / Turso.

    Singleton accessed via ``ProfileStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: ProfileStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> ProfileStore:
        """Return the shared ProfileStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def _connect(self):  # noqa: ANN201
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await ensure_schema(db)
            self._initialised = True
        return db

    @staticmethod
    def _from_row(row: tuple) -> ChildProfile:
        data = dict(zip(_COLUMNS, row, strict=True))
        data["profile_completed"] = bool(data["profile_completed"])
        data["is_active"] = bool(data["is_active"])
        for key, value in data.items():
            if value is None and key != "age":
                data[key] = ""
        return ChildProfile.model_validate(data)

    async def get_profile(self, child_id: str) -> ChildProfile | None:
        """Fetch a profile by child ID, or None if there is no such child."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM children WHERE id = ?", (child_id,)
            )
            row = await cursor.fetchone()
            return self._from_row(row) if row else None
        finally:
            await db.close()

    async def owns(self, family_id: str, child_id: str) -> bool:
        """True when *child_id* is an active child of *family_id*."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT 1 FROM children WHERE id = ? AND family_id = ? AND is_active = 1",
                (child_id, family_id),
            )
            return await cursor.fetchone() is not None
        finally:
            await db.close()

    async def child_summary(self, child_id: str) -> dict | None:
        """Return ``{"id", "name"}`` for listings."""
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT id, name FROM children WHERE id = ?", (child_id,))
            row = await cursor.fetchone()
            return {"id": row[0], "name": row[1]} if row else None
        finally:
            await db.close()
