"""ContextComposer: assembles the system prompt for one turn.

Section order is fixed: directive, profile, memories, documents, guidance.
Profile, memories and documents are fetched concurrently and each degrades
to its own fallback text on failure.  The message is embedded once and the
vector shared by both retrievals.  Recent emotional patterns ride along in
the memories section and are simply left out when unavailable.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from sprout.children.models import ChildProfile
from sprout.children.store import ProfileStore
from sprout.context.guidance import build_guidance
from sprout.context.profile import render_profile
from sprout.llm.prompts import (
    DEFAULT_PROFILE_CONTEXT,
    DOCUMENTS_NONE,
    DOCUMENTS_UNAVAILABLE,
    GUIDANCE_UNAVAILABLE,
    MEMORY_NEW_TOPIC,
    MEMORY_UNAVAILABLE,
    THERAPEUTIC_DIRECTIVE,
)
from sprout.memory.models import EmotionalPatterns
from sprout.memory.store import embed_query, find_documents, recall_memories, recent_patterns

if TYPE_CHECKING:
    from collections.abc import Callable

    from sprout.memory.models import DocumentMatch, MemoryMatch


logger = logging.getLogger(__name__)

DIRECTIVE = "directive"
PROFILE = "profile"
MEMORIES = "memories"
DOCUMENTS = "documents"
GUIDANCE = "guidance"

_UNSET: Any = object()


@dataclass(frozen=True)
class Fragment:
    """One prompt section: rendered when present, otherwise its fallback text."""

    name: str
    present: bool
    render: Callable[[], str]
    fallback: str

    def resolve(self, child_id: str) -> str:
        if not self.present:
            return self.fallback
        try:
            return self.render()
        except Exception:
            logger.warning("Rendering %s failed for child %s", self.name, child_id, exc_info=True)
            return self.fallback


@dataclass
class PromptBlock:
    """Ordered prompt sections plus how many excerpts each retrieval contributed."""

    sections: list[tuple[str, str]] = field(default_factory=list)
    memory_count: int = 0
    document_count: int = 0

    @property
    def text(self) -> str:
        return "\n\n".join(body for _, body in self.sections)

    def section(self, name: str) -> str:
        for key, body in self.sections:
            if key == name:
                return body
        raise KeyError(name)

    def extend(self, name: str, body: str) -> PromptBlock:
        """Return a copy with one more section appended."""
        return PromptBlock(
            sections=[*self.sections, (name, body)],
            memory_count=self.memory_count,
            document_count=self.document_count,
        )


def _span(days: int) -> str:
    return f"{days // 7} weeks" if days % 7 == 0 else f"{days} days"


def render_patterns(patterns: EmotionalPatterns) -> list[str]:
    lines = [
        f"RECENT EMOTIONAL PATTERNS ({_span(patterns.days)}):",
        f"- Average Anxiety: {patterns.average_anxiety:.1f}/10",
        f"- Average Stress: {patterns.average_stress:.1f}/10",
        f"- Common Topics: {', '.join(patterns.common_topics) or 'none recorded'}",
    ]
    if patterns.trend:
        lines.append(f"- Trend: {patterns.trend}")
    lines.append("")
    return lines


def render_memories(
    memories: list[MemoryMatch], patterns: EmotionalPatterns | None = None
) -> str:
    if not memories:
        return MEMORY_NEW_TOPIC
    lines = ["THERAPEUTIC MEMORY CONTEXT:", "", "SIMILAR PAST CONVERSATIONS:"]
    for i, memory in enumerate(memories, 1):
        lines.append(f"{i}. Previous discussion ({memory.session_date or 'unknown date'}):")
        lines.append(f'   Child said: "{memory.child_messages}"')
        lines.append(f"   Topics: {', '.join(memory.topics) or 'none recorded'}")
        anxiety = memory.mood_anxiety if memory.mood_anxiety is not None else "?"
        stress = memory.mood_stress if memory.mood_stress is not None else "?"
        lines.append(f"   Mood then: Anxiety {anxiety}/10, Stress {stress}/10")
        if memory.insights:
            lines.append(f"   Insights: {memory.insights}")
        lines.append("")
    if patterns is not None:
        lines += render_patterns(patterns)
    lines += [
        "USE THIS CONTEXT TO:",
        "- Reference past conversations when relevant",
        "- Check in on coping strategies discussed before",
        "- Notice patterns and help the child recognise them too",
    ]
    return "\n".join(lines)


def render_documents(documents: list[DocumentMatch]) -> str:
    if not documents:
        return DOCUMENTS_NONE
    lines = ["CHILD-SPECIFIC DOCUMENTS (background from the family):"]
    for i, doc in enumerate(documents, 1):
        lines.append(f"{i}. {doc.filename}")
        lines.append(f"   {doc.content_preview}")
    lines.append("Use these for background understanding; do not quote them to the child.")
    return "\n".join(lines)


class ContextComposer:
    """Builds a PromptBlock for a child and message."""

    def __init__(self, profiles: ProfileStore | None = None) -> None:
        self._profiles = profiles

    @property
    def profiles(self) -> ProfileStore:
        return self._profiles or ProfileStore.get()

    async def _load_profile(
        self, child_id: str, profile: ChildProfile | None
    ) -> ChildProfile | None:
        if profile is _UNSET:
            return await self.profiles.get_profile(child_id)
        return profile

    async def compose(
        self,
        child_id: str,
        message: str,
        *,
        profile: ChildProfile | None = _UNSET,
    ) -> PromptBlock:
        """Compose the prompt for *message*.

        Args:
            child_id: Child whose profile, memories and documents to use.
            message: The child's current message (retrieval query and
                keyword source).
            profile: Already-loaded profile; fetched when omitted.  None
                renders the default profile.
        """
        loaded, vector, patterns = await asyncio.gather(
            self._load_profile(child_id, profile),
            embed_query(message),
            recent_patterns(child_id),
            return_exceptions=True,
        )
        if isinstance(vector, BaseException):
            memories = documents = vector
        else:
            memories, documents = await asyncio.gather(
                recall_memories(child_id, vector),
                find_documents(child_id, vector),
                return_exceptions=True,
            )

        for source, outcome in (
            (PROFILE, loaded),
            (MEMORIES, memories),
            (DOCUMENTS, documents),
            ("patterns", patterns),
        ):
            if isinstance(outcome, BaseException):
                logger.warning("%s lookup failed for child %s: %s", source, child_id, outcome)

        has_profile = isinstance(loaded, ChildProfile)
        profile_used = loaded if has_profile else None
        recent = patterns if isinstance(patterns, EmotionalPatterns) else None
        fragments = (
            Fragment(DIRECTIVE, True, lambda: THERAPEUTIC_DIRECTIVE, THERAPEUTIC_DIRECTIVE),
            Fragment(
                PROFILE,
                has_profile,
                partial(render_profile, loaded),
                DEFAULT_PROFILE_CONTEXT,
            ),
            Fragment(
                MEMORIES,
                isinstance(memories, list),
                partial(render_memories, memories, recent),
                MEMORY_UNAVAILABLE,
            ),
            Fragment(
                DOCUMENTS,
                isinstance(documents, list),
                partial(render_documents, documents),
                DOCUMENTS_UNAVAILABLE,
            ),
            Fragment(
                GUIDANCE,
                True,
                partial(build_guidance, profile_used, message),
                GUIDANCE_UNAVAILABLE,
            ),
        )

        block = PromptBlock(sections=[(f.name, f.resolve(child_id)) for f in fragments])
        if isinstance(memories, list):
            block.memory_count = len(memories)
        if isinstance(documents, list):
            block.document_count = len(documents)
        return block

    async def profile_context(self, child_id: str) -> dict[str, Any]:
        """Profile plus its rendered section, for client inspection."""
        profile = await self.profiles.get_profile(child_id)
        return {
            "profile": profile.model_dump(exclude={"emergency_contacts"}) if profile else None,
            "context": render_profile(profile) if profile else DEFAULT_PROFILE_CONTEXT,
        }
