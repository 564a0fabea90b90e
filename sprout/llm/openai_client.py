"""Lazily-created shared OpenAI client (embeddings, speech)."""

from __future__ import annotations

from openai import AsyncOpenAI

from sprout.config import settings

_client: AsyncOpenAI | None = None


def get_openai_client() -> AsyncOpenAI:
    """Lazily initialize the OpenAI client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.external_timeout_seconds,
            max_retries=0,
        )
    return _client
