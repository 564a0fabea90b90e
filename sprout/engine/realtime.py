"""Realtime voice events: a closed set of named events with typed payloads.

Unknown event names and malformed payloads are rejected before any handler
runs.  Each child has at most one tracked RealtimeChannel recording the
negotiation stage and the Session its messages land in.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from sprout.access.gate import VOICE_CHAT
from sprout.context.composer import ContextComposer
from sprout.llm.prompts import REALTIME_VOICE_GUIDELINES
from sprout.results import Failure, InvalidPayload, SproutError, Success, UnknownEvent
from sprout.safety import crisis
from sprout.voice import realtime_api

if TYPE_CHECKING:
    from sprout.engine.turn import SessionEngine
    from sprout.results import Result

logger = logging.getLogger(__name__)

# Retrieval query used when opening a channel, before the child has spoken.
OPENING_QUERY = "starting a voice conversation"


class RealtimeEvent(StrEnum):
    CREATE_SESSION = "create_session"
    SEND_SDP_OFFER = "send_sdp_offer"
    STORE_USER_MESSAGE = "store_user_message"
    STORE_AI_RESPONSE = "store_ai_response"
    GET_CHILD_CONTEXT = "get_child_context"


class Stage(StrEnum):
    CREATED = "created"
    CONNECTED = "connected"
    CONVERSING = "conversing"


# -- Payloads ------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class NoPayload(_Payload):
    pass


class SdpOffer(_Payload):
    sdp: str = Field(min_length=1)
    ephemeral_key: str = Field(
        min_length=1, validation_alias=AliasChoices("ephemeral_key", "ephemeralKey")
    )


class UserMessage(_Payload):
    content: str = Field(min_length=1)


class AssistantMessage(_Payload):
    session_id: str = Field(
        min_length=1, validation_alias=AliasChoices("session_id", "sessionId")
    )
    content: str = Field(min_length=1)


PAYLOADS: dict[RealtimeEvent, type[_Payload]] = {
    RealtimeEvent.CREATE_SESSION: NoPayload,
    RealtimeEvent.SEND_SDP_OFFER: SdpOffer,
    RealtimeEvent.STORE_USER_MESSAGE: UserMessage,
    RealtimeEvent.STORE_AI_RESPONSE: AssistantMessage,
    RealtimeEvent.GET_CHILD_CONTEXT: NoPayload,
}


def _describe(exc: ValidationError) -> str:
    fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
    return f"Missing or invalid fields: {', '.join(fields)}" if fields else "Invalid payload"


def parse_event(name: str, payload: dict[str, Any] | None) -> tuple[RealtimeEvent, _Payload]:
    """Resolve *name* and validate *payload*.

    Raises:
        UnknownEvent: *name* is not a RealtimeEvent.
        InvalidPayload: Required payload fields are missing.
    """
    try:
        event = RealtimeEvent(name)
    except ValueError:
        raise UnknownEvent(f"Unknown event type: {name}") from None
    try:
        data = PAYLOADS[event].model_validate(payload or {})
    except ValidationError as exc:
        raise InvalidPayload(_describe(exc)) from None
    return event, data


@dataclass
class RealtimeChannel:
    """Handshake state for one child's live voice channel."""

    id: str
    child_id: str
    stage: Stage = Stage.CREATED
    session_id: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class RealtimeEventRouter:
    """Dispatches realtime events for the SessionEngine."""

    def __init__(self, engine: SessionEngine, composer: ContextComposer | None = None) -> None:
        self._engine = engine
        self._composer = composer or engine.composer
        self._channels: dict[str, RealtimeChannel] = {}

    def channel(self, child_id: str) -> RealtimeChannel | None:
        return self._channels.get(child_id)

    async def dispatch(
        self,
        family_id: str,
        child_id: str,
        name: str,
        payload: dict[str, Any] | None = None,
    ) -> Result[dict[str, Any]]:
        """Validate and handle one event."""
        try:
            event, data = parse_event(name, payload)
            await self._engine.authorize(family_id, child_id, VOICE_CHAT)
            handler = getattr(self, f"_on_{event.value}")
            return Success(await handler(child_id, data))
        except SproutError as exc:
            logger.warning(
                "Realtime event %s failed for child %s: %s (%s)",
                name,
                child_id,
                exc.message,
                exc.cause,
            )
            return Failure.from_error(exc)
        except Exception:
            logger.exception("Realtime event %s failed for child %s", name, child_id)
            return Failure.internal()

    # -- Handlers --------------------------------------------------------------

    async def _on_create_session(self, child_id: str, data: NoPayload) -> dict[str, Any]:
        block = await self._composer.compose(child_id, OPENING_QUERY)
        instructions = block.extend("realtime", REALTIME_VOICE_GUIDELINES).text
        provider_session = await realtime_api.create_realtime_session(instructions)
        channel_id = provider_session.get("id") or f"realtime-{int(time.time() * 1000)}"
        self._channels[child_id] = RealtimeChannel(id=channel_id, child_id=child_id)
        logger.info("Opened realtime channel %s for child %s", channel_id, child_id)
        return {"sessionId": channel_id, "session": provider_session}

    async def _on_send_sdp_offer(self, child_id: str, data: SdpOffer) -> dict[str, Any]:
        answer = await realtime_api.forward_sdp_offer(data.sdp, data.ephemeral_key)
        channel = self._channels.get(child_id)
        if channel is not None:
            channel.stage = Stage.CONNECTED
        return {"sdp": answer}

    async def _on_store_user_message(self, child_id: str, data: UserMessage) -> dict[str, Any]:
        flagged = crisis.detect(data.content)
        if flagged:
            logger.warning("Crisis language detected for child %s (realtime)", child_id)
        session = await self._engine.sessions.append_child_message(
            child_id, data.content, crisis=flagged
        )
        channel = self._channels.get(child_id)
        if channel is not None:
            channel.stage = Stage.CONVERSING
            channel.session_id = session.id
        return {"sessionId": session.id, "crisisFlag": flagged}

    async def _on_store_ai_response(
        self, child_id: str, data: AssistantMessage
    ) -> dict[str, Any]:
        session = await self._engine.sessions.append_assistant_message(
            child_id, data.session_id, data.content
        )
        return {"sessionId": session.id}

    async def _on_get_child_context(self, child_id: str, data: NoPayload) -> dict[str, Any]:
        return await self._composer.profile_context(child_id)
