"""Tests for profile rendering, situational guidance and the ContextComposer."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from sprout.children.models import ChildProfile
from sprout.children.store import ProfileStore
from sprout.context.composer import (
    DOCUMENTS,
    GUIDANCE,
    MEMORIES,
    PROFILE,
    ContextComposer,
    render_documents,
    render_memories,
)
from sprout.context.guidance import build_guidance, matched_directives
from sprout.context.profile import (
    AGE_BAND_RULES,
    MIDDLE,
    TEEN,
    YOUNG,
    age_band,
    render_profile,
)
from sprout.llm.prompts import (
    DEFAULT_PROFILE_CONTEXT,
    DOCUMENTS_NONE,
    DOCUMENTS_UNAVAILABLE,
    MEMORY_NEW_TOPIC,
    MEMORY_UNAVAILABLE,
    THERAPEUTIC_DIRECTIVE,
)
from sprout.memory.models import DocumentMatch, EmotionalPatterns, MemoryMatch

YOUNG_HEADER = "AGE-APPROPRIATE APPROACH (AGES 8 AND UNDER)"


def _profile(**overrides) -> ChildProfile:
    data = {
        "id": "child-1",
        "family_id": "fam-1",
        "name": "Leo",
        "age": 6,
        "current_concerns": "separation anxiety, sleep",
        "parent_goals": "Sleep in his own bed",
        "reason_for_adding": "New baby sister",
        "family_dynamics": "parents recently separated",
        "interests": "dinosaurs",
        "profile_completed": True,
    }
    data.update(overrides)
    return ChildProfile(**data)


def _document() -> DocumentMatch:
    return DocumentMatch(id="d1", filename="school_report.pdf", content_preview="Leo is shy.")


class TestAgeBand:
    def test_boundaries(self):
        assert age_band(8) == YOUNG
        assert age_band(9) == MIDDLE
        assert age_band(12) == MIDDLE
        assert age_band(13) == TEEN
        assert age_band(None) is None


class TestRenderProfile:
    def test_young_band_uses_interests(self):
        text = render_profile(_profile())
        assert YOUNG_HEADER in text
        assert "use dinosaurs as a metaphor" in text
        assert "- Name: Leo" in text

    def test_teen_band(self):
        text = render_profile(_profile(age=15))
        assert AGE_BAND_RULES[TEEN].splitlines()[0] in text
        assert YOUNG_HEADER not in text

    def test_fallbacks_for_missing_fields(self):
        text = render_profile(_profile(triggers="", school_info=""))
        assert "No specific triggers identified yet" in text
        assert "No specific school information noted" in text

    def test_personalization(self):
        text = render_profile(_profile())
        assert "Leo enjoys dinosaurs" in text
        assert "parents recently separated" in text


class TestGuidance:
    def test_keyword_directives(self):
        assert matched_directives("I'm so WORRIED and mad") == ["anxiety", "anger"]
        assert matched_directives("I had pizza") == []

    def test_includes_concerns_and_band(self):
        text = build_guidance(_profile(), "I'm scared of the dark")
        assert "Known concern: separation anxiety" in text
        assert "Young child" in text
        assert "grounding technique" in text

    def test_without_profile_or_signals(self):
        text = build_guidance(None, "hello")
        assert "follow the child's lead" in text


class TestRenderers:
    def test_memories(self):
        memory = MemoryMatch(
            id="m1",
            session_date="2026-01-02",
            child_messages="I hate mornings",
            topics=["Sleep issues"],
            mood_anxiety=7,
            mood_stress=6,
            insights="Tired and anxious",
        )
        text = render_memories([memory])
        assert "Previous discussion (2026-01-02)" in text
        assert 'Child said: "I hate mornings"' in text
        assert "Anxiety 7/10, Stress 6/10" in text

    def test_memories_with_patterns(self):
        memory = MemoryMatch(id="m1", session_date="2026-01-02", child_messages="hi")
        patterns = EmotionalPatterns(
            conversations=4,
            days=14,
            average_anxiety=6.3,
            average_stress=4.0,
            common_topics=["Sleep issues", "School stress"],
            trend="Emotional state appears stable",
        )
        text = render_memories([memory], patterns)
        assert "RECENT EMOTIONAL PATTERNS (2 weeks):" in text
        assert "- Average Anxiety: 6.3/10" in text
        assert "- Common Topics: Sleep issues, School stress" in text
        assert "- Trend: Emotional state appears stable" in text
        assert text.index("Previous discussion") < text.index("RECENT EMOTIONAL PATTERNS")
        assert text.index("RECENT EMOTIONAL PATTERNS") < text.index("USE THIS CONTEXT TO:")

    def test_patterns_skipped_without_memories(self):
        patterns = EmotionalPatterns(
            conversations=1, days=14, average_anxiety=5, average_stress=5
        )
        assert render_memories([], patterns) == MEMORY_NEW_TOPIC

    def test_empty_lists(self):
        assert render_memories([]) == MEMORY_NEW_TOPIC
        assert render_documents([]) == DOCUMENTS_NONE


def _composer(profile: ChildProfile | None) -> ContextComposer:
    store = MagicMock(spec=ProfileStore)
    store.get_profile = AsyncMock(return_value=profile)
    return ContextComposer(store)


class TestComposer:
    async def test_young_child_with_one_document_and_no_memories(self):
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[])),
            patch(
                "sprout.context.composer.find_documents", AsyncMock(return_value=[_document()])
            ),
        ):
            block = await _composer(_profile(age=6)).compose("child-1", "I miss my dad")

        assert YOUNG_HEADER in block.text
        assert block.memory_count == 0
        assert block.document_count == 1
        assert block.section(MEMORIES) == MEMORY_NEW_TOPIC
        assert block.section(DOCUMENTS).count("school_report.pdf") == 1

    async def test_section_order(self):
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[])),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=[])),
        ):
            block = await _composer(_profile()).compose("child-1", "hi")
        assert [name for name, _ in block.sections] == [
            "directive",
            PROFILE,
            MEMORIES,
            DOCUMENTS,
            GUIDANCE,
        ]
        assert block.text.startswith(THERAPEUTIC_DIRECTIVE)

    async def test_failed_sources_degrade(self):
        with (
            patch(
                "sprout.context.composer.recall_memories",
                AsyncMock(side_effect=RuntimeError("qdrant down")),
            ),
            patch(
                "sprout.context.composer.find_documents",
                AsyncMock(side_effect=TimeoutError()),
            ),
        ):
            block = await _composer(_profile()).compose("child-1", "I feel sad")
        assert block.section(MEMORIES) == MEMORY_UNAVAILABLE
        assert block.section(DOCUMENTS) == DOCUMENTS_UNAVAILABLE
        assert "sounds sad" in block.section(GUIDANCE)

    async def test_message_is_embedded_once(self):
        recall = AsyncMock(return_value=[])
        find = AsyncMock(return_value=[])
        with (
            patch("sprout.context.composer.embed_query", AsyncMock(return_value=[0.1])) as embed,
            patch("sprout.context.composer.recall_memories", recall),
            patch("sprout.context.composer.find_documents", find),
        ):
            await _composer(_profile()).compose("child-1", "school again")

        embed.assert_awaited_once_with("school again")
        recall.assert_awaited_once_with("child-1", [0.1])
        find.assert_awaited_once_with("child-1", [0.1])

    async def test_embedding_failure_degrades_both_retrievals(self):
        recall = AsyncMock(return_value=[])
        with (
            patch(
                "sprout.context.composer.embed_query",
                AsyncMock(side_effect=RuntimeError("openai down")),
            ),
            patch("sprout.context.composer.recall_memories", recall),
        ):
            block = await _composer(_profile()).compose("child-1", "hi")

        recall.assert_not_awaited()
        assert block.section(MEMORIES) == MEMORY_UNAVAILABLE
        assert block.section(DOCUMENTS) == DOCUMENTS_UNAVAILABLE

    async def test_recent_patterns_join_memories(self):
        memory = MemoryMatch(id="m1", session_date="2026-01-02", child_messages="hi")
        patterns = EmotionalPatterns(
            conversations=2,
            days=14,
            average_anxiety=7,
            average_stress=3,
            common_topics=["Friends"],
        )
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[memory])),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=[])),
            patch("sprout.context.composer.recent_patterns", AsyncMock(return_value=patterns)),
        ):
            block = await _composer(_profile()).compose("child-1", "hi")

        assert "- Average Anxiety: 7.0/10" in block.section(MEMORIES)
        assert "- Common Topics: Friends" in block.section(MEMORIES)

    async def test_patterns_failure_keeps_memories(self):
        memory = MemoryMatch(id="m1", session_date="2026-01-02", child_messages="hi")
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[memory])),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=[])),
            patch(
                "sprout.context.composer.recent_patterns",
                AsyncMock(side_effect=ConnectionError("qdrant down")),
            ),
        ):
            block = await _composer(_profile()).compose("child-1", "hi")

        assert "Previous discussion (2026-01-02)" in block.section(MEMORIES)
        assert "RECENT EMOTIONAL PATTERNS" not in block.section(MEMORIES)

    async def test_disabled_index_renders_unavailable(self):
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=None)),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=None)),
        ):
            block = await _composer(_profile()).compose("child-1", "hi")
        assert block.section(MEMORIES) == MEMORY_UNAVAILABLE
        assert block.section(DOCUMENTS) == DOCUMENTS_UNAVAILABLE

    async def test_missing_profile_uses_default(self):
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[])),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=[])),
        ):
            block = await _composer(None).compose("child-1", "hi")
        assert block.section(PROFILE) == DEFAULT_PROFILE_CONTEXT

    async def test_profile_lookup_failure_uses_default(self):
        store = MagicMock(spec=ProfileStore)
        store.get_profile = AsyncMock(side_effect=RuntimeError("db locked"))
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[])),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=[])),
        ):
            block = await ContextComposer(store).compose("child-1", "hi")
        assert block.section(PROFILE) == DEFAULT_PROFILE_CONTEXT

    async def test_supplied_profile_skips_lookup(self):
        composer = _composer(None)
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[])),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=[])),
        ):
            block = await composer.compose("child-1", "hi", profile=_profile(name="Ava"))
        assert "- Name: Ava" in block.section(PROFILE)
        composer.profiles.get_profile.assert_not_awaited()

    async def test_extend(self):
        with (
            patch("sprout.context.composer.recall_memories", AsyncMock(return_value=[])),
            patch("sprout.context.composer.find_documents", AsyncMock(return_value=[])),
        ):
            block = await _composer(None).compose("child-1", "hi")
        extended = block.extend("realtime", "EXTRA")
        assert extended.text.endswith("EXTRA")
        assert len(block.sections) == 5


async def test_profile_context(db_path: Path, seed) -> None:
    await seed("child-1", emergency_contacts="Grandma 555-0100")
    context = await ContextComposer(ProfileStore(db_path=db_path)).profile_context("child-1")
    assert context["profile"]["name"] == "Maya"
    assert "emergency_contacts" not in context["profile"]
    assert "AGES 9 TO 12" in context["context"]
