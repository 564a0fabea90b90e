"""Long-term memory: retrieval of past sessions and child documents, the
recent emotional-pattern summary, and the once-per-session memory write.

Retrieval functions return None when the vector index is disabled, an empty
list when nothing matched, and raise on backend failure; the composer tells
the three apart.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sprout.memory.embeddings import embed
from sprout.memory.index import DOCUMENT_TYPE, MEMORY_TYPE, TIMESTAMP_KEY, VectorIndex
from sprout.memory.models import DocumentMatch, EmotionalPatterns, MemoryMatch

if TYPE_CHECKING:
    from sprout.sessions.models import Session

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 500
TOP_K = 3

PATTERN_DAYS = 14
PATTERN_LIMIT = 100
COMMON_TOPICS = 3
TREND_WINDOW = 5
TREND_MARGIN = 1.0
NEUTRAL_SCORE = 5.0

_MEMORY_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "sprout/therapeutic-memory")


def memory_point_id(session_id: str) -> str:
    """Deterministic point id for a session's memory record."""
    return str(uuid.uuid5(_MEMORY_NAMESPACE, session_id))


def _as_int(value: Any) -> int | None:
    return value if isinstance(value, int) else None


def _memory_from_point(point: Any) -> MemoryMatch:
    payload = point.payload or {}
    return MemoryMatch(
        id=str(point.id),
        score=point.score,
        session_date=payload.get("session_date", ""),
        child_messages=payload.get("child_messages", ""),
        ai_messages=payload.get("ai_messages", ""),
        topics=list(payload.get("topics") or []),
        mood_anxiety=_as_int(payload.get("mood_anxiety")),
        mood_stress=_as_int(payload.get("mood_stress")),
        insights=payload.get("therapeutic_insights", ""),
    )


def _document_from_point(point: Any) -> DocumentMatch:
    payload = point.payload or {}
    return DocumentMatch(
        id=str(point.id),
        score=point.score,
        filename=payload.get("filename") or "Document",
        content_preview=payload.get("content_preview", ""),
    )


async def embed_query(text: str) -> list[float] | None:
    """Retrieval vector for *text*, or None when the index is disabled.

    Computed once per turn and shared by memory and document lookups.
    """
    if not VectorIndex.get().enabled:
        return None
    return await embed(text)


async def recall_memories(
    child_id: str, vector: list[float] | None, k: int = TOP_K
) -> list[MemoryMatch] | None:
    """Nearest past-session memories for *child_id*."""
    if vector is None:
        return None
    points = await VectorIndex.get().query(
        vector, {"child_id": child_id, "type": MEMORY_TYPE}, k
    )
    return [_memory_from_point(p) for p in points]


async def find_documents(
    child_id: str, vector: list[float] | None, k: int = TOP_K
) -> list[DocumentMatch] | None:
    """Nearest uploaded reference documents for *child_id*."""
    if vector is None:
        return None
    points = await VectorIndex.get().query(
        vector, {"child_id": child_id, "type": DOCUMENT_TYPE}, k
    )
    return [_document_from_point(p) for p in points]


# -- Emotional patterns ----------------------------------------------------------


def _average(payloads: list[dict[str, Any]], key: str) -> float:
    values = [p[key] for p in payloads if isinstance(p.get(key), int | float)]
    return sum(values) / len(values) if values else NEUTRAL_SCORE


def _trend(payloads: list[dict[str, Any]]) -> str:
    """Compare anxiety in the latest few memories against the ones before."""
    recent, older = payloads[-TREND_WINDOW:], payloads[:-TREND_WINDOW]
    if not older:
        return "Establishing baseline"
    recent_avg = _average(recent, "mood_anxiety")
    older_avg = _average(older, "mood_anxiety")
    if recent_avg < older_avg - TREND_MARGIN:
        return "Anxiety levels appear to be improving"
    if recent_avg > older_avg + TREND_MARGIN:
        return "Anxiety levels may be increasing; monitor closely"
    return "Emotional state appears stable"


def summarize_patterns(
    payloads: list[dict[str, Any]], days: int = PATTERN_DAYS
) -> EmotionalPatterns | None:
    """Average mood, frequent topics and anxiety trend; None without memories."""
    if not payloads:
        return None
    ordered = sorted(payloads, key=lambda p: p.get(TIMESTAMP_KEY) or 0)
    topics = Counter(
        topic
        for payload in ordered
        for topic in payload.get("topics") or []
        if isinstance(topic, str) and topic
    )
    return EmotionalPatterns(
        conversations=len(ordered),
        days=days,
        average_anxiety=_average(ordered, "mood_anxiety"),
        average_stress=_average(ordered, "mood_stress"),
        common_topics=[topic for topic, _ in topics.most_common(COMMON_TOPICS)],
        trend=_trend(ordered),
    )


async def recent_patterns(
    child_id: str, days: int = PATTERN_DAYS
) -> EmotionalPatterns | None:
    """Summarize the child's memories from the last *days* days.

    None when the index is disabled or nothing was stored in that window.
    """
    index = VectorIndex.get()
    if not index.enabled:
        return None
    cutoff = int((datetime.now(UTC) - timedelta(days=days)).timestamp())
    records = await index.scroll(
        {"child_id": child_id, "type": MEMORY_TYPE},
        since={TIMESTAMP_KEY: cutoff},
        limit=PATTERN_LIMIT,
    )
    return summarize_patterns([r.payload or {} for r in records], days)


def _epoch_seconds(value: str) -> int | None:
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp())


def memory_payload(session: Session) -> dict[str, Any]:
    """Metadata stored alongside a completed session's embedding."""
    payload: dict[str, Any] = {
        "child_id": session.child_id,
        "type": MEMORY_TYPE,
        "session_id": session.id,
        "session_date": session.created_at[:10],
        "child_messages": session.child_text()[:EXCERPT_CHARS],
        "ai_messages": session.assistant_text()[:EXCERPT_CHARS],
        "topics": list(session.topics),
        "therapeutic_insights": session.mood.insights if session.mood else "",
        "crisis_detected": session.crisis_detected,
        "timestamp": session.completed_at or session.updated_at,
    }
    started = _epoch_seconds(session.created_at)
    if started is not None:
        payload[TIMESTAMP_KEY] = started
    if session.mood is not None:
        for name, value in session.mood.model_dump(exclude={"insights"}).items():
            payload[f"mood_{name}"] = value
    return payload


async def remember_session(session: Session) -> str | None:
    """Write the memory record for a completed session.

    Returns the point id, or None when skipped (no messages, or the index
    is disabled).  Backend failures propagate.
    """
    if not session.messages:
        return None
    index = VectorIndex.get()
    if not index.enabled:
        return None

    summary = f"{session.child_text()}\n{session.assistant_text()}".strip()
    vector = await embed(summary)
    point_id = memory_point_id(session.id)
    await index.upsert(point_id, vector, memory_payload(session))
    logger.info("Stored memory %s for child %s", point_id, session.child_id)
    return point_id
