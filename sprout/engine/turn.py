"""SessionEngine: turns one inbound message into a safe, personalized reply.

Order of a text turn:

1. Subscription and ownership checks.
2. Crisis gate.  On a match the fixed safety reply is returned and the turn
   is persisted with a mood computed from the triggering text; nothing else
   runs.
3. Profile completeness.
4. Context composition and inbound mood/topic analysis, concurrently.
5. The completion call.
6. Persistence, shielded from cancellation.  A persistence failure is
   logged and never turns a delivered reply into an error.

Public methods return ``Success`` or ``Failure``.  A ``SproutError`` maps
to its own cause; anything else is logged and becomes ``internal_error``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sprout.access.gate import CHAT_SESSIONS, VOICE_CHAT, TableSubscriptionGate
from sprout.analysis.cache import MoodCache
from sprout.analysis.mood import MoodAnalyzer, TurnAnalysis
from sprout.children.store import ProfileStore
from sprout.config import settings
from sprout.context.composer import ContextComposer
from sprout.llm import client as llm
from sprout.memory.store import remember_session
from sprout.results import (
    AccessDenied,
    Failure,
    InvalidPayload,
    ProfileIncomplete,
    SproutError,
    Success,
    UpgradeRequired,
    UpstreamError,
)
from sprout.safety import crisis
from sprout.sessions.store import DEFAULT_PAGE_SIZE, SessionStore
from sprout.voice import speech

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from pathlib import Path

    from sprout.access.gate import SubscriptionGate
    from sprout.results import Result
    from sprout.sessions.models import MoodScore, Session

logger = logging.getLogger(__name__)


@dataclass
class TurnReply:
    reply: str
    mood: MoodScore
    topics: list[str]
    crisis: bool = False
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reply": self.reply,
            "moodAnalysis": self.mood.model_dump(),
            "topics": list(self.topics),
            "crisisFlag": self.crisis,
            "sessionId": self.session_id,
        }


@dataclass
class VoiceReply:
    transcript: str = ""
    reply: str = ""
    audio_reply: str | None = None
    use_client_tts: bool = False
    crisis: bool = False
    is_empty: bool = False
    session_id: str | None = None
    mood: MoodScore | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transcript": self.transcript,
            "reply": self.reply,
            "audioReply": self.audio_reply,
            "useClientTTS": self.use_client_tts,
            "crisisFlag": self.crisis,
            "isEmpty": self.is_empty,
            "sessionId": self.session_id,
            "moodAnalysis": self.mood.model_dump() if self.mood else None,
        }


@dataclass
class SessionPage:
    sessions: list[Session]
    page: int
    page_size: int
    total: int
    child: dict[str, Any] | None = None
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.total_pages = math.ceil(self.total / self.page_size) if self.page_size else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions": [s.to_dict() for s in self.sessions],
            "pagination": {
                "page": self.page,
                "pageSize": self.page_size,
                "total": self.total,
                "totalPages": self.total_pages,
            },
            "child": self.child,
        }


class SessionEngine:
    """Coordinates crisis gate, composer, analyzer, completion and storage.

    Collaborators are injected; ``SessionEngine.create()`` wires the
    production set from settings.
    """

    def __init__(
        self,
        *,
        sessions: SessionStore,
        analyzer: MoodAnalyzer,
        profiles: ProfileStore | None = None,
        composer: ContextComposer | None = None,
        gate: SubscriptionGate | None = None,
    ) -> None:
        self.sessions = sessions
        self.analyzer = analyzer
        self.profiles = profiles or ProfileStore.get()
        self.composer = composer or ContextComposer(self.profiles)
        self.gate: SubscriptionGate = gate or TableSubscriptionGate()
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def create(cls, db_path: Path | None = None) -> SessionEngine:
        cache = MoodCache(
            ttl_seconds=settings.mood_cache_ttl_seconds,
            max_entries=settings.mood_cache_max_entries,
        )
        analyzer = MoodAnalyzer(cache)
        profiles = ProfileStore(db_path=db_path) if db_path else ProfileStore.get()
        return cls(
            sessions=SessionStore(db_path=db_path, analyzer=analyzer),
            analyzer=analyzer,
            profiles=profiles,
            gate=TableSubscriptionGate(db_path=db_path),
        )

    # -- Background work -------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight persistence and memory writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- Guards ----------------------------------------------------------------

    async def authorize(self, family_id: str, child_id: str, feature: str) -> None:
        """Raise unless *family_id* may use *feature* for *child_id*."""
        decision = await self.gate.check_access(family_id, feature)
        if not decision.allowed:
            raise UpgradeRequired(decision.reason or "Subscription required", feature=feature)
        if not await self.profiles.owns(family_id, child_id):
            raise AccessDenied("Child not found or access denied")

    async def _require_complete_profile(self, child_id: str):  # noqa: ANN202
        """Loaded profile, or None (default profile) when the read fails."""
        try:
            profile = await self.profiles.get_profile(child_id)
        except Exception:
            logger.warning("Profile lookup failed for child %s", child_id, exc_info=True)
            return None
        if profile is not None and not profile.is_complete:
            raise ProfileIncomplete(
                "Please complete the child's profile before starting a session"
            )
        return profile

    # -- Persistence -----------------------------------------------------------

    async def _store_turn(
        self,
        child_id: str,
        user_text: str,
        reply: str,
        crisis_flag: bool,
        analysis: TurnAnalysis | None,
    ) -> Session | None:
        try:
            return await self.sessions.append_turn(
                child_id, user_text, reply, crisis=crisis_flag, analysis=analysis
            )
        except Exception:
            logger.exception("Failed to persist turn for child %s", child_id)
            return None

    async def _persist(
        self,
        child_id: str,
        user_text: str,
        reply: str,
        *,
        crisis_flag: bool = False,
        analysis: TurnAnalysis | None = None,
    ) -> Session | None:
        task = self._spawn(self._store_turn(child_id, user_text, reply, crisis_flag, analysis))
        return await asyncio.shield(task)

    async def _crisis_turn(self, child_id: str, text: str) -> tuple[TurnAnalysis, Session | None]:
        logger.warning("Crisis language detected for child %s", child_id)
        analysis = await self.analyzer.analyze(text)
        session = await self._persist(
            child_id, text, crisis.CRISIS_REPLY, crisis_flag=True, analysis=analysis
        )
        return analysis, session

    # -- Turns -----------------------------------------------------------------

    async def process_turn(
        self,
        family_id: str,
        child_id: str,
        message: str,
        history: list[dict[str, Any]] | None = None,
    ) -> Result[TurnReply]:
        """Handle one text turn."""
        try:
            message = (message or "").strip()
            if not message:
                raise InvalidPayload("Message is required")
            await self.authorize(family_id, child_id, CHAT_SESSIONS)

            if crisis.detect(message):
                analysis, session = await self._crisis_turn(child_id, message)
                return Success(
                    TurnReply(
                        reply=crisis.CRISIS_REPLY,
                        mood=analysis.mood,
                        topics=analysis.topics,
                        crisis=True,
                        session_id=session.id if session else None,
                    )
                )

            profile = await self._require_complete_profile(child_id)
            age = profile.age if profile else None
            block, analysis = await asyncio.gather(
                self.composer.compose(child_id, message, profile=profile),
                self.analyzer.analyze(message, age),
            )
            reply = await llm.complete(block.text, history or [], message, llm.CHAT)
        except SproutError as exc:
            logger.warning("Turn failed for child %s: %s (%s)", child_id, exc.message, exc.cause)
            return Failure.from_error(exc)
        except Exception:
            logger.exception("Turn failed for child %s", child_id)
            return Failure.internal()

        session = await self._persist(child_id, message, reply)
        return Success(
            TurnReply(
                reply=reply,
                mood=analysis.mood,
                topics=analysis.topics,
                session_id=session.id if session else None,
            )
        )

    async def process_voice_turn(
        self,
        family_id: str,
        child_id: str,
        audio: bytes,
        history: list[dict[str, Any]] | None = None,
        session_id: str | None = None,
    ) -> Result[VoiceReply]:
        """Handle one recorded voice turn: transcribe, reply, speak.

        *session_id* is the client's correlation id; it is echoed back when
        nothing was persisted.
        """
        fallback_id = session_id or f"voice-{int(time.time() * 1000)}"
        try:
            await self.authorize(family_id, child_id, VOICE_CHAT)
            try:
                transcript = await speech.transcribe(audio)
            except Exception as exc:
                logger.exception("Transcription failed for child %s", child_id)
                raise UpstreamError("Could not transcribe audio") from exc

            if not transcript:
                return Success(VoiceReply(is_empty=True, session_id=fallback_id))

            if crisis.detect(transcript):
                analysis, session = await self._crisis_turn(child_id, transcript)
                return Success(
                    VoiceReply(
                        transcript=transcript,
                        reply=crisis.CRISIS_REPLY,
                        use_client_tts=True,
                        crisis=True,
                        session_id=session.id if session else fallback_id,
                        mood=analysis.mood,
                    )
                )

            profile = await self._require_complete_profile(child_id)
            age = profile.age if profile else None
            block, analysis = await asyncio.gather(
                self.composer.compose(child_id, transcript, profile=profile),
                self.analyzer.analyze(transcript, age),
            )
            reply = await llm.complete(block.text, history or [], transcript, llm.VOICE)
        except SproutError as exc:
            logger.warning(
                "Voice turn failed for child %s: %s (%s)", child_id, exc.message, exc.cause
            )
            return Failure.from_error(exc)
        except Exception:
            logger.exception("Voice turn failed for child %s", child_id)
            return Failure.internal()

        audio_reply, session = await asyncio.gather(
            speech.synthesize(reply),
            self._persist(child_id, transcript, reply),
        )
        return Success(
            VoiceReply(
                transcript=transcript,
                reply=reply,
                audio_reply=audio_reply,
                use_client_tts=audio_reply is None,
                session_id=session.id if session else fallback_id,
                mood=analysis.mood,
            )
        )

    # -- Sessions --------------------------------------------------------------

    async def finish_session(
        self, child_id: str, duration_minutes: int | None = None
    ) -> Session | None:
        """Complete the child's active session and queue its memory write."""
        session = await self.sessions.complete_active(child_id, duration_minutes)
        if session is not None and session.messages:
            self._spawn(self._remember(session))
        return session

    async def _remember(self, session: Session) -> None:
        try:
            await remember_session(session)
        except Exception:
            logger.exception("Failed to store memory for session %s", session.id)

    async def complete_session(
        self,
        family_id: str,
        child_id: str,
        duration_minutes: int | None = None,
    ) -> Result[Session | None]:
        """Explicit end of conversation from the client."""
        try:
            if not await self.profiles.owns(family_id, child_id):
                raise AccessDenied("Child not found or access denied")
            return Success(await self.finish_session(child_id, duration_minutes))
        except SproutError as exc:
            return Failure.from_error(exc)
        except Exception:
            logger.exception("Completing session failed for child %s", child_id)
            return Failure.internal()

    async def list_sessions(
        self,
        family_id: str,
        child_id: str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Result[SessionPage]:
        """Newest-first page of the child's sessions."""
        try:
            if not await self.profiles.owns(family_id, child_id):
                raise AccessDenied("Child not found or access denied")
            page = max(1, page)
            page_size = max(1, page_size)
            sessions, total = await self.sessions.list_sessions(child_id, page, page_size)
            child = await self.profiles.child_summary(child_id)
        except SproutError as exc:
            return Failure.from_error(exc)
        except Exception:
            logger.exception("Listing sessions failed for child %s", child_id)
            return Failure.internal()
        return Success(
            SessionPage(sessions=sessions, page=page, page_size=page_size, total=total, child=child)
        )

    async def child_context(self, family_id: str, child_id: str) -> Result[dict[str, Any]]:
        """Profile and its rendered prompt section, for client display."""
        try:
            if not await self.profiles.owns(family_id, child_id):
                raise AccessDenied("Child not found or access denied")
            return Success(await self.composer.profile_context(child_id))
        except SproutError as exc:
            return Failure.from_error(exc)
        except Exception:
            logger.exception("Loading context failed for child %s", child_id)
            return Failure.internal()
