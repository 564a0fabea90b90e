"""Data models for vector-store matches."""

from pydantic import BaseModel, Field


class MemoryMatch(BaseModel):
    """A past-session memory retrieved for a child."""

    id: str
    score: float = 0.0
    session_date: str = ""
    child_messages: str = ""
    ai_messages: str = ""
    topics: list[str] = Field(default_factory=list)
    mood_anxiety: int | None = None
    mood_stress: int | None = None
    insights: str = ""


class DocumentMatch(BaseModel):
    """A child-scoped reference document excerpt."""

    id: str
    score: float = 0.0
    filename: str = "Document"
    content_preview: str = ""


class EmotionalPatterns(BaseModel):
    """Mood and topic summary over a child's recent memories."""

    conversations: int
    days: int
    average_anxiety: float
    average_stress: float
    common_topics: list[str] = Field(default_factory=list)
    trend: str = ""
