"""Text embeddings via the OpenAI embeddings endpoint."""

from __future__ import annotations

from sprout.config import settings
from sprout.llm.openai_client import get_openai_client

MAX_EMBED_CHARS = 8000


async def embed(text: str) -> list[float]:
    """Embed *text* (truncated to MAX_EMBED_CHARS) and return the vector."""
    response = await get_openai_client().embeddings.create(
        model=settings.embedding_model,
        input=text[:MAX_EMBED_CHARS],
        dimensions=settings.embedding_dimensions,
    )
    return list(response.data[0].embedding)
