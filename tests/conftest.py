"""Shared test fixtures."""

from pathlib import Path

import pytest

from sprout.children.store import ProfileStore
from sprout.db import connect, ensure_schema
from sprout.memory.index import VectorIndex

COMPLETE_CHILD = {
    "name": "Maya",
    "age": 10,
    "gender": "female",
    "current_concerns": "anxiety, school stress",
    "parent_goals": "Build coping skills",
    "reason_for_adding": "Worries a lot before school",
    "interests": "drawing",
    "profile_completed": 1,
    "is_active": 1,
}


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("sprout.config.settings.turso_database_url", "")


@pytest.fixture(autouse=True)
def _reset_singletons():
    ProfileStore._reset()
    VectorIndex._reset()
    yield
    ProfileStore._reset()
    VectorIndex._reset()


@pytest.fixture
def db_path(tmp_path: Path, _no_turso) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def seed(db_path: Path):
    """Insert a family and one of its children.

    ``await seed("child-1", age=6)`` overrides any child column; ``tier`` and
    ``status`` set the family's subscription.
    """

    async def _seed(
        child_id: str = "child-1",
        family_id: str = "fam-1",
        *,
        tier: str = "premium",
        status: str = "active",
        **child,
    ) -> None:
        fields = {**COMPLETE_CHILD, **child}
        columns = ["id", "family_id", *fields]
        async with connect(db_path) as db:
            await ensure_schema(db)
            await db.execute(
                "INSERT OR REPLACE INTO families (id, subscription_tier, subscription_status) "
                "VALUES (?, ?, ?)",
                (family_id, tier, status),
            )
            await db.execute(
                f"INSERT OR REPLACE INTO children ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' * len(columns))})",
                (child_id, family_id, *fields.values()),
            )
            await db.commit()

    return _seed
