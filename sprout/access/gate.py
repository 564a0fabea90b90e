"""SubscriptionGate protocol and the table-backed implementation.

Billing lives elsewhere; this service only reads the family's current tier
and status and turns them into allow/deny decisions per feature.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sprout.db import ensure_schema, get_connection

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CHAT_SESSIONS = "chat_sessions"
VOICE_CHAT = "voice_chat"

# Tiers that unlock each feature; status must also be active.
FEATURE_TIERS: dict[str, frozenset[str]] = {
    CHAT_SESSIONS: frozenset({"basic", "premium", "family"}),
    VOICE_CHAT: frozenset({"premium", "family"}),
}

ACTIVE_STATUSES = frozenset({"active", "trialing"})


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""


@runtime_checkable
class SubscriptionGate(Protocol):
    """Interface consulted before any paid path."""

    async def check_access(self, family_id: str, feature: str) -> AccessDecision:
        """Allow or deny *feature* for *family_id*."""
        ...


class TableSubscriptionGate:
    """Reads ``families.subscription_tier`` / ``subscription_status``."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    async def _connect(self):  # noqa: ANN201
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await ensure_schema(db)
            self._initialised = True
        return db

    async def check_access(self, family_id: str, feature: str) -> AccessDecision:
        tiers = FEATURE_TIERS.get(feature)
        if tiers is None:
            raise ValueError(f"Unknown feature: {feature}")

        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT subscription_tier, subscription_status FROM families WHERE id = ?",
                (family_id,),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()

        if row is None:
            return AccessDecision(False, "Family account not found")
        tier, status = row[0] or "", row[1] or ""
        if status not in ACTIVE_STATUSES:
            return AccessDecision(False, "An active subscription is required")
        if tier not in tiers:
            label = feature.replace("_", " ")
            return AccessDecision(False, f"Your plan does not include {label}")
        return AccessDecision(True)
