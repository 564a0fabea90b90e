"""Bounded TTL cache for mood analysis results."""

from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sprout.sessions.models import MoodScore

logger = logging.getLogger(__name__)

KEY_PREFIX_CHARS = 100


def mood_cache_key(text: str, age: int | None = None) -> str:
    """Hash of the first 100 characters plus the age discriminator."""
    raw = f"{text[:KEY_PREFIX_CHARS]}_{age if age is not None else 'unknown'}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class MoodCache:
    """In-memory memo of MoodScores keyed by ``mood_cache_key``.

    Entries expire after *ttl_seconds*.  Once the cache holds more than
    *max_entries*, expired entries are swept on the next write; if it is
    still over the bound the oldest entries are evicted.

    Args:
        ttl_seconds: Lifetime of an entry.
        max_entries: Size that triggers a sweep.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, MoodScore]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> MoodScore | None:
        """Return a live entry, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, score = entry
        if self._clock() - stored_at >= self._ttl:
            return None
        return score

    def set(self, key: str, score: MoodScore) -> None:
        self._entries[key] = (self._clock(), score)
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_entries:
            self.sweep()

    def sweep(self) -> int:
        """Drop expired entries, then the oldest beyond the bound. Returns count removed."""
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self._ttl]
        for key in expired:
            del self._entries[key]
        removed = len(expired)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
            removed += 1
        if removed:
            logger.debug("Mood cache sweep removed %d entries", removed)
        return removed

    def clear(self) -> None:
        self._entries.clear()
