"""Tests for SessionEngine: text and voice turns end to end over a real database."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import anthropic
import httpx
import pytest

from sprout.engine.turn import SessionEngine
from sprout.llm.prompts import ANALYSIS_SYSTEM
from sprout.results import Failure, Success
from sprout.safety.crisis import CRISIS_REPLY
from sprout.sessions.models import COMPLETED

REPLY = "What made today feel so heavy, Maya?"

ANALYSIS_JSON = json.dumps(
    {
        "happiness": 2,
        "anxiety": 14,
        "sadness": 9,
        "stress": 8,
        "confidence": 2,
        "insights": "Child is in acute distress",
        "topics": ["Mental health"],
    }
)

SPEECH = b"\x00" * 4096


def _fake_llm(reply: str = REPLY) -> AsyncMock:
    """complete_text stand-in: analysis prompts get JSON, replies get *reply*."""

    async def fake(messages, *, system=None, model=None, max_tokens=1024, temperature=None):
        if system == ANALYSIS_SYSTEM:
            return ANALYSIS_JSON
        return reply

    return AsyncMock(side_effect=fake)


def _reply_calls(mock: AsyncMock) -> list:
    return [c for c in mock.await_args_list if c.kwargs.get("system") != ANALYSIS_SYSTEM]


@pytest.fixture
def engine(db_path: Path) -> SessionEngine:
    return SessionEngine.create(db_path=db_path)


@pytest.fixture
def llm():
    mock = _fake_llm()
    with patch("sprout.llm.client.complete_text", mock):
        yield mock


# -- Text turns --------------------------------------------------------------


async def test_turn_success(engine: SessionEngine, seed, llm: AsyncMock) -> None:
    await seed()
    result = await engine.process_turn("fam-1", "child-1", "School was awful today")

    assert isinstance(result, Success)
    reply = result.value
    assert reply.reply == REPLY
    assert reply.mood.anxiety == 10
    assert reply.topics == ["Mental health"]
    assert not reply.crisis

    session = await engine.sessions.active_session("child-1")
    assert reply.session_id == session.id
    assert [m.content for m in session.messages] == ["School was awful today", REPLY]

    system = _reply_calls(llm)[0].kwargs["system"]
    assert "AGES 9 TO 12" in system
    assert "- Name: Maya" in system


async def test_turn_passes_history(engine: SessionEngine, seed, llm: AsyncMock) -> None:
    await seed()
    history = [
        {"sender": "child", "content": "hi"},
        {"sender": "assistant", "content": "Hi Maya"},
    ]
    await engine.process_turn("fam-1", "child-1", "I'm back", history)

    messages = _reply_calls(llm)[0].args[0]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[-1]["content"] == "I'm back"


async def test_crisis_turn(engine: SessionEngine, seed, llm: AsyncMock) -> None:
    await seed()
    result = await engine.process_turn("fam-1", "child-1", "I want to kill myself")

    assert isinstance(result, Success)
    assert result.value.reply == CRISIS_REPLY
    assert result.value.crisis
    assert result.value.mood.sadness == 9
    assert _reply_calls(llm) == []

    session = await engine.sessions.get_session(result.value.session_id)
    assert session.crisis_detected
    assert session.messages[1].content == CRISIS_REPLY
    assert session.mood.anxiety == 10


async def test_crisis_precedes_profile_check(engine: SessionEngine, seed, llm: AsyncMock) -> None:
    await seed(profile_completed=0)
    result = await engine.process_turn("fam-1", "child-1", "I can't go on anymore")
    assert isinstance(result, Success)
    assert result.value.crisis


async def test_access_denied_for_other_family(engine: SessionEngine, seed, llm) -> None:
    await seed("child-1", "fam-1")
    await seed("child-2", "fam-2")

    result = await engine.process_turn("fam-2", "child-1", "hello")

    assert isinstance(result, Failure)
    assert result.cause == "access_denied"
    assert result.status == 403
    assert await engine.sessions.count_active("child-1") == 0


async def test_upgrade_required(engine: SessionEngine, seed, llm) -> None:
    await seed(status="inactive")

    result = await engine.process_turn("fam-1", "child-1", "hello")

    assert isinstance(result, Failure)
    assert result.to_dict() == {
        "error": "An active subscription is required",
        "cause": "subscription_required",
        "requiresSubscription": True,
        "feature": "chat_sessions",
    }


async def test_profile_incomplete(engine: SessionEngine, seed, llm: AsyncMock) -> None:
    await seed(parent_goals="")

    result = await engine.process_turn("fam-1", "child-1", "hello")

    assert isinstance(result, Failure)
    assert result.cause == "profile_incomplete"
    assert result.status == 422
    assert llm.await_count == 0


async def test_empty_message(engine: SessionEngine, seed) -> None:
    result = await engine.process_turn("fam-1", "child-1", "   ")
    assert isinstance(result, Failure)
    assert result.cause == "invalid_payload"


async def test_empty_reply_is_not_persisted(engine: SessionEngine, seed) -> None:
    await seed()
    with patch("sprout.llm.client.complete_text", _fake_llm(reply="  ")):
        result = await engine.process_turn("fam-1", "child-1", "hello")

    assert isinstance(result, Failure)
    assert result.cause == "empty_reply"
    assert await engine.sessions.count_active("child-1") == 0


async def test_provider_failure(engine: SessionEngine, seed) -> None:
    await seed()
    error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api"))

    async def fake(messages, *, system=None, **kwargs):
        if system == ANALYSIS_SYSTEM:
            return ANALYSIS_JSON
        raise error

    with patch("sprout.llm.client.complete_text", AsyncMock(side_effect=fake)):
        result = await engine.process_turn("fam-1", "child-1", "hello")

    assert isinstance(result, Failure)
    assert result.cause == "upstream_error"
    assert result.status == 502


async def test_persistence_failure_keeps_reply(engine: SessionEngine, seed, llm) -> None:
    await seed()
    with patch.object(
        engine.sessions, "append_turn", AsyncMock(side_effect=RuntimeError("disk full"))
    ):
        result = await engine.process_turn("fam-1", "child-1", "hello")

    assert isinstance(result, Success)
    assert result.value.reply == REPLY
    assert result.value.session_id is None


# -- Voice turns -------------------------------------------------------------


async def test_voice_turn(engine: SessionEngine, seed, llm: AsyncMock) -> None:
    await seed()
    with (
        patch("sprout.voice.speech.transcribe", AsyncMock(return_value="I miss my friend")),
        patch("sprout.voice.speech.synthesize", AsyncMock(return_value="bXAz")),
    ):
        result = await engine.process_voice_turn("fam-1", "child-1", SPEECH)

    voice = result.value
    assert voice.transcript == "I miss my friend"
    assert voice.reply == REPLY
    assert voice.audio_reply == "bXAz"
    assert not voice.use_client_tts
    assert "VOICE CHAT GUIDELINES" in _reply_calls(llm)[0].kwargs["system"]
    session = await engine.sessions.active_session("child-1")
    assert voice.session_id == session.id


async def test_voice_tts_fallback(engine: SessionEngine, seed, llm) -> None:
    await seed()
    with (
        patch("sprout.voice.speech.transcribe", AsyncMock(return_value="I miss my friend")),
        patch("sprout.voice.speech.synthesize", AsyncMock(return_value=None)),
    ):
        result = await engine.process_voice_turn("fam-1", "child-1", SPEECH)

    assert result.value.audio_reply is None
    assert result.value.use_client_tts
    assert result.value.to_dict()["useClientTTS"] is True


async def test_voice_empty_transcript(engine: SessionEngine, seed, llm: AsyncMock) -> None:
    await seed()
    with patch("sprout.voice.speech.transcribe", AsyncMock(return_value="")):
        result = await engine.process_voice_turn(
            "fam-1", "child-1", SPEECH, session_id="client-42"
        )

    assert result.value.is_empty
    assert result.value.session_id == "client-42"
    assert llm.await_count == 0
    assert await engine.sessions.count_active("child-1") == 0


async def test_voice_empty_transcript_generates_id(engine: SessionEngine, seed) -> None:
    await seed()
    with patch("sprout.voice.speech.transcribe", AsyncMock(return_value="")):
        result = await engine.process_voice_turn("fam-1", "child-1", SPEECH)
    assert result.value.session_id.startswith("voice-")


async def test_voice_crisis_uses_client_tts(engine: SessionEngine, seed, llm) -> None:
    await seed()
    synthesize = AsyncMock(return_value="bXAz")
    with (
        patch("sprout.voice.speech.transcribe", AsyncMock(return_value="I want to die")),
        patch("sprout.voice.speech.synthesize", synthesize),
    ):
        result = await engine.process_voice_turn("fam-1", "child-1", SPEECH)

    assert result.value.crisis
    assert result.value.reply == CRISIS_REPLY
    assert result.value.use_client_tts
    synthesize.assert_not_called()


async def test_voice_requires_voice_tier(engine: SessionEngine, seed) -> None:
    await seed(tier="basic")
    transcribe = AsyncMock(return_value="hello")
    with patch("sprout.voice.speech.transcribe", transcribe):
        result = await engine.process_voice_turn("fam-1", "child-1", SPEECH)

    assert result.cause == "subscription_required"
    assert result.feature == "voice_chat"
    transcribe.assert_not_called()


async def test_voice_transcription_failure(engine: SessionEngine, seed) -> None:
    await seed()
    with patch("sprout.voice.speech.transcribe", AsyncMock(side_effect=RuntimeError("down"))):
        result = await engine.process_voice_turn("fam-1", "child-1", SPEECH)
    assert result.cause == "upstream_error"


# -- Sessions ----------------------------------------------------------------


async def test_complete_session_queues_memory(engine: SessionEngine, seed, llm) -> None:
    await seed()
    await engine.process_turn("fam-1", "child-1", "hello")
    remember = AsyncMock(return_value="pid")

    with patch("sprout.engine.turn.remember_session", remember):
        result = await engine.complete_session("fam-1", "child-1", duration_minutes=15)
        await engine.drain()

    session = result.value
    assert session.status == COMPLETED
    assert session.duration_minutes == 15
    remember.assert_awaited_once()
    assert remember.call_args.args[0].id == session.id


async def test_memory_failure_does_not_fail_completion(engine: SessionEngine, seed, llm) -> None:
    await seed()
    await engine.process_turn("fam-1", "child-1", "hello")
    with patch(
        "sprout.engine.turn.remember_session", AsyncMock(side_effect=ConnectionError("qdrant"))
    ):
        result = await engine.complete_session("fam-1", "child-1")
        await engine.drain()
    assert isinstance(result, Success)


async def test_complete_without_active_session(engine: SessionEngine, seed) -> None:
    await seed()
    result = await engine.complete_session("fam-1", "child-1")
    assert isinstance(result, Success)
    assert result.value is None


async def test_complete_session_other_family(engine: SessionEngine, seed) -> None:
    await seed()
    result = await engine.complete_session("fam-2", "child-1")
    assert result.cause == "access_denied"


async def test_list_sessions(engine: SessionEngine, seed, llm) -> None:
    await seed()
    for _ in range(3):
        await engine.process_turn("fam-1", "child-1", "hello")
        await engine.finish_session("child-1")
    await engine.drain()

    result = await engine.list_sessions("fam-1", "child-1", page=1, page_size=2)

    body = result.value.to_dict()
    assert len(body["sessions"]) == 2
    assert body["pagination"] == {"page": 1, "pageSize": 2, "total": 3, "totalPages": 2}
    assert body["child"] == {"id": "child-1", "name": "Maya"}


async def test_child_context(engine: SessionEngine, seed) -> None:
    await seed()
    result = await engine.child_context("fam-1", "child-1")
    assert result.value["profile"]["name"] == "Maya"

    denied = await engine.child_context("fam-2", "child-1")
    assert denied.cause == "access_denied"


# -- Unexpected failures -----------------------------------------------------


async def test_profile_read_failure_uses_default(engine: SessionEngine, seed, llm) -> None:
    await seed()
    with patch.object(
        engine.profiles, "get_profile", AsyncMock(side_effect=RuntimeError("db blip"))
    ):
        result = await engine.process_turn("fam-1", "child-1", "hello there")

    assert isinstance(result, Success)
    assert result.value.reply == REPLY
    system = _reply_calls(llm)[0].kwargs["system"]
    assert "- Name: Maya" not in system


async def test_unexpected_error_becomes_internal_failure(engine: SessionEngine, seed) -> None:
    await seed()
    with patch.object(engine.profiles, "owns", AsyncMock(side_effect=RuntimeError("db blip"))):
        turn = await engine.process_turn("fam-1", "child-1", "hello there")
        voice = await engine.process_voice_turn("fam-1", "child-1", SPEECH)
        completed = await engine.complete_session("fam-1", "child-1")
        listed = await engine.list_sessions("fam-1", "child-1")
        context = await engine.child_context("fam-1", "child-1")

    for result in (turn, voice, completed, listed, context):
        assert isinstance(result, Failure)
        assert result.cause == "internal_error"
        assert result.status == 500
        assert "db blip" not in result.message


async def test_gate_failure_becomes_internal_failure(engine: SessionEngine, seed) -> None:
    await seed()
    with patch.object(engine.gate, "check_access", AsyncMock(side_effect=ValueError("boom"))):
        result = await engine.process_turn("fam-1", "child-1", "hello there")
    assert result.cause == "internal_error"
