"""Mood scoring and topic tagging via the analysis model.

Both calls degrade to a neutral result on any failure; neither ever raises
to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sprout.analysis.cache import MoodCache, mood_cache_key
from sprout.llm import client as llm
from sprout.llm.models import ModelManager
from sprout.llm.prompts import ANALYSIS_SYSTEM, DEFAULT_TOPIC, mood_prompt, topic_prompt
from sprout.sessions.models import MOOD_FIELDS, MoodScore

logger = logging.getLogger(__name__)

MAX_TOPICS = 3
MAX_ANALYSIS_CHARS = 4000
FALLBACK_INSIGHT = "Unable to analyze mood - using neutral baseline scores"


@dataclass
class TurnAnalysis:
    """Mood and topics describing some span of conversation."""

    mood: MoodScore
    topics: list[str] = field(default_factory=lambda: [DEFAULT_TOPIC])


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse a JSON object from model output, tolerating markdown fences."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            return None
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def parse_mood(text: str) -> MoodScore | None:
    """Build a clamped MoodScore from model output, or None if unusable."""
    data = parse_json_object(text)
    if data is None or not any(name in data for name in MOOD_FIELDS):
        return None
    insights = data.get("insights") or data.get("insight")
    values: dict[str, Any] = {name: data.get(name) for name in MOOD_FIELDS}
    if isinstance(insights, str) and insights.strip():
        values["insights"] = insights.strip()
    return MoodScore(**values)


def parse_topics(text: str) -> list[str]:
    """Extract up to three topic strings; empty list if unusable."""
    data = parse_json_object(text)
    if data is None:
        return []
    raw = data.get("topics")
    if not isinstance(raw, list):
        return []
    topics = [t.strip() for t in raw if isinstance(t, str) and t.strip()]
    return topics[:MAX_TOPICS]


class MoodAnalyzer:
    """Derives MoodScores and topic tags from child text.

    Args:
        cache: Memo for ``analyze_mood``; construct once per process and share.
    """

    def __init__(self, cache: MoodCache) -> None:
        self._cache = cache

    @property
    def cache(self) -> MoodCache:
        return self._cache

    async def _ask(self, prompt: str, max_tokens: int) -> str:
        return await llm.complete_text(
            [{"role": "user", "content": prompt}],
            system=ANALYSIS_SYSTEM,
            model=ModelManager.get().get_analysis_model(),
            max_tokens=max_tokens,
            temperature=0.2,
        )

    async def analyze_mood(
        self, text: str, age: int | None = None, *, use_cache: bool = True
    ) -> MoodScore:
        """Score *text* on the five mood axes.

        Results are memoized by the first 100 characters and *age* when
        *use_cache* is set.  Any failure yields the neutral score.
        """
        if not text.strip():
            return MoodScore.neutral()

        key = mood_cache_key(text, age)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        try:
            raw = await self._ask(mood_prompt(text[-MAX_ANALYSIS_CHARS:], age), max_tokens=300)
        except Exception:
            logger.warning("Mood analysis call failed; using neutral scores", exc_info=True)
            return MoodScore.neutral(FALLBACK_INSIGHT)

        score = parse_mood(raw)
        if score is None:
            logger.warning("Mood analysis returned unparseable output; using neutral scores")
            return MoodScore.neutral(FALLBACK_INSIGHT)

        if use_cache:
            self._cache.set(key, score)
        return score

    async def extract_topics(self, text: str) -> list[str]:
        """Tag *text* with one to three topics; ``["General conversation"]`` on failure."""
        if not text.strip():
            return [DEFAULT_TOPIC]
        try:
            raw = await self._ask(topic_prompt(text[-MAX_ANALYSIS_CHARS:]), max_tokens=150)
        except Exception:
            logger.warning("Topic extraction call failed; using default topic", exc_info=True)
            return [DEFAULT_TOPIC]
        return parse_topics(raw) or [DEFAULT_TOPIC]

    async def analyze(
        self, text: str, age: int | None = None, *, use_cache: bool = True
    ) -> TurnAnalysis:
        """Run mood and topic analysis concurrently."""
        mood, topics = await asyncio.gather(
            self.analyze_mood(text, age, use_cache=use_cache),
            self.extract_topics(text),
        )
        return TurnAnalysis(mood=mood, topics=topics)
