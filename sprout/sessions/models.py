"""Session, Message and MoodScore data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, field_validator

ACTIVE = "active"
COMPLETED = "completed"

CHILD = "child"
ASSISTANT = "assistant"

MOOD_FIELDS = ("happiness", "anxiety", "sadness", "stress", "confidence")
NEUTRAL_SCORE = 5
NEUTRAL_INSIGHT = "Child engaging in conversation with a typical emotional range"


def clamp_score(value: Any) -> int:
    """Coerce a model-supplied score into the 1-10 range (neutral if unusable)."""
    try:
        score = round(float(value))
    except (TypeError, ValueError):
        return NEUTRAL_SCORE
    return max(1, min(10, score))


class MoodScore(BaseModel):
    """Five 1-10 sentiment scores plus a free-text insight."""

    happiness: int = NEUTRAL_SCORE
    anxiety: int = NEUTRAL_SCORE
    sadness: int = NEUTRAL_SCORE
    stress: int = NEUTRAL_SCORE
    confidence: int = NEUTRAL_SCORE
    insights: str = NEUTRAL_INSIGHT

    @field_validator(*MOOD_FIELDS, mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_score(value)

    @classmethod
    def neutral(cls, insights: str = NEUTRAL_INSIGHT) -> MoodScore:
        return cls(insights=insights)


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Message:
    """One appended utterance. Immutable once part of a session."""

    sender: str  # "child" or "assistant"
    content: str
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, str]:
        return {"sender": self.sender, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        sender = data.get("sender", CHILD)
        # Older rows used "ai" for the assistant
        if sender == "ai":
            sender = ASSISTANT
        return cls(
            sender=sender,
            content=data.get("content", ""),
            timestamp=data.get("timestamp") or _now(),
        )


@dataclass
class Session:
    """One continuous conversational encounter for a child.

    Attributes:
        id: UUID hex.
        child_id: Owning child.
        messages: Append-ordered transcript.
        mood: Latest mood analysis over the transcript, if any.
        topics: Latest topic tags over the transcript.
        status: ``"active"`` or ``"completed"``.
        crisis_detected: Sticky flag; set once any turn tripped the crisis gate.
        duration_minutes: Stamped on completion.
        analyzed_count: Transcript length the stored mood/topics describe.
        created_at / updated_at / completed_at: ISO 8601 timestamps.
    """

    id: str
    child_id: str
    messages: list[Message] = field(default_factory=list)
    mood: MoodScore | None = None
    topics: list[str] = field(default_factory=list)
    status: str = ACTIVE
    crisis_detected: bool = False
    duration_minutes: int | None = None
    analyzed_count: int = 0
    created_at: str = ""
    updated_at: str = ""
    completed_at: str | None = None

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = _now()
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def child_text(self) -> str:
        """All child utterances joined in order."""
        return "\n".join(m.content for m in self.messages if m.sender == CHILD)

    def assistant_text(self) -> str:
        return "\n".join(m.content for m in self.messages if m.sender == ASSISTANT)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "child_id": self.child_id,
            "messages": [m.to_dict() for m in self.messages],
            "mood_analysis": self.mood.model_dump() if self.mood else None,
            "topics": list(self.topics),
            "status": self.status,
            "crisis_detected": self.crisis_detected,
            "session_duration": self.duration_minutes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``therapy_sessions`` column order."""
        return (
            self.id,
            self.child_id,
            json.dumps([m.to_dict() for m in self.messages]),
            self.mood.model_dump_json() if self.mood else None,
            json.dumps(self.topics),
            self.status,
            int(self.crisis_detected),
            self.duration_minutes,
            self.analyzed_count,
            self.created_at,
            self.updated_at,
            self.completed_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Session:
        """Deserialize from a ``SELECT *`` row tuple."""
        return cls(
            id=row[0],
            child_id=row[1],
            messages=[Message.from_dict(m) for m in json.loads(row[2] or "[]")],
            mood=MoodScore.model_validate_json(row[3]) if row[3] else None,
            topics=json.loads(row[4] or "[]"),
            status=row[5],
            crisis_detected=bool(row[6]),
            duration_minutes=row[7],
            analyzed_count=row[8] or 0,
            created_at=row[9],
            updated_at=row[10],
            completed_at=row[11],
        )


def make_session_id() -> str:
    """Generate a new session ID."""
    return uuid.uuid4().hex
