"""Async Claude client and the reply completion gateway."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import anthropic

from sprout.config import settings
from sprout.llm.models import ModelManager
from sprout.llm.prompts import VOICE_GUIDELINES
from sprout.results import EmptyReply, UpstreamError

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None

CHAT = "chat"
VOICE = "voice"

_USER_ROLES = {"user", "child"}
_ASSISTANT_ROLES = {"assistant", "ai"}


@dataclass(frozen=True)
class ReplyMode:
    """Token budget and system suffix for one reply style."""

    max_tokens: int
    suffix: str = ""


def reply_mode(mode: str) -> ReplyMode:
    """Resolve ``"chat"`` or ``"voice"`` to its ReplyMode."""
    if mode == VOICE:
        return ReplyMode(max_tokens=settings.voice_max_tokens, suffix=VOICE_GUIDELINES)
    if mode == CHAT:
        return ReplyMode(max_tokens=settings.chat_max_tokens)
    raise ValueError(f"Unknown reply mode: {mode}")


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.external_timeout_seconds,
            max_retries=0,
        )
    return _client


async def complete_text(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int = 1024,
    temperature: float | None = None,
) -> str:
    """Single-shot Claude call with no tools and no streaming.

    Returns the first text block, or an empty string when the model
    produced nothing.
    """
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or ModelManager.get().get_chat_model(),
        "max_tokens": max_tokens,
        "messages": messages,
    }
    if system is not None:
        kwargs["system"] = system
    if temperature is not None:
        kwargs["temperature"] = temperature
    response = await client.messages.create(**kwargs)
    if not response.content:
        return ""
    return getattr(response.content[0], "text", "") or ""


def history_to_messages(history: list[dict[str, Any]], window: int) -> list[dict[str, str]]:
    """Convert client-supplied history to Claude messages.

    Keeps the most recent *window* entries, oldest first.  Entries may use
    ``sender`` (child/assistant) or ``role`` (user/assistant).  Consecutive
    same-role entries are merged and a leading assistant entry is dropped so
    the result alternates and starts with the user.
    """
    recent = history[-window:] if window > 0 else []
    messages: list[dict[str, str]] = []
    for entry in recent:
        role_name = str(entry.get("sender") or entry.get("role") or "").lower()
        content = str(entry.get("content") or "").strip()
        if not content:
            continue
        if role_name in _USER_ROLES:
            role = "user"
        elif role_name in _ASSISTANT_ROLES:
            role = "assistant"
        else:
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n\n{content}"
        else:
            messages.append({"role": role, "content": content})
    while messages and messages[0]["role"] == "assistant":
        messages.pop(0)
    return messages


async def complete(
    prompt_block: str,
    history: list[dict[str, Any]],
    text: str,
    mode: str = CHAT,
) -> str:
    """Produce the assistant reply for one turn.

    Args:
        prompt_block: Composed instruction text (becomes the system prompt).
        history: Prior conversation, oldest first.
        text: The child's current message.
        mode: ``"chat"`` or ``"voice"``; selects token budget and suffix.

    Raises:
        EmptyReply: The model returned no text.
        UpstreamError: The provider call failed.
    """
    style = reply_mode(mode)
    system = f"{prompt_block}\n\n{style.suffix}" if style.suffix else prompt_block

    messages = history_to_messages(history, settings.history_window)
    if messages and messages[-1]["role"] == "user":
        messages[-1]["content"] += f"\n\n{text}"
    else:
        messages.append({"role": "user", "content": text})

    try:
        reply = await complete_text(
            messages,
            system=system,
            max_tokens=style.max_tokens,
            temperature=0.7,
        )
    except anthropic.APIError as exc:
        logger.error("Completion call failed: %s", exc)
        raise UpstreamError("The completion provider is unavailable") from exc

    reply = reply.strip()
    if not reply:
        raise EmptyReply("No response from the completion provider")
    return reply
