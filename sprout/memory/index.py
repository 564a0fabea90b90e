"""Shared vector collection backed by Qdrant.

Memories and knowledge documents live in one collection and are told apart
by the ``type`` payload field.  Every query filters on ``child_id`` and
``type``.

Supports two modes controlled by settings:
- Enabled: ``QDRANT_URL`` and ``OPENAI_API_KEY`` set.
- Disabled: either missing.  ``enabled`` is False and callers skip
  retrieval and memory writes.
"""

from __future__ import annotations

import logging
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    Range,
    Record,
    ScoredPoint,
    VectorParams,
)

from sprout.config import settings

logger = logging.getLogger(__name__)

MEMORY_TYPE = "therapeutic_memory"
DOCUMENT_TYPE = "knowledge_base_document"

REQUIRED_FILTER_KEYS = ("child_id", "type")
TIMESTAMP_KEY = "session_timestamp"


def build_filter(
    conditions: dict[str, Any], since: dict[str, float] | None = None
) -> Filter:
    """Exact-match Filter over payload fields; child_id and type are mandatory.

    *since* adds ``field >= value`` range conditions.
    """
    missing = [key for key in REQUIRED_FILTER_KEYS if not conditions.get(key)]
    if missing:
        raise ValueError(f"Vector query filter missing: {', '.join(missing)}")
    must = [
        FieldCondition(key=key, match=MatchValue(value=value))
        for key, value in conditions.items()
    ]
    for key, value in (since or {}).items():
        must.append(FieldCondition(key=key, range=Range(gte=value)))
    return Filter(must=must)


class VectorIndex:
    """Singleton handle on the Qdrant collection.

    Get the shared instance via ``VectorIndex.get()``.
    """

    _instance: VectorIndex | None = None

    def __init__(
        self,
        client: AsyncQdrantClient | None = None,
        collection: str | None = None,
    ) -> None:
        self._collection = collection or settings.qdrant_collection
        self._ready = False
        if client is not None:
            self._client: AsyncQdrantClient | None = client
        elif settings.vector_store_enabled:
            self._client = AsyncQdrantClient(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key or None,
                timeout=int(settings.external_timeout_seconds),
            )
            logger.info("Vector index: %s (collection %s)", settings.qdrant_url, self._collection)
        else:
            self._client = None
            logger.warning(
                "Vector index disabled; set QDRANT_URL and OPENAI_API_KEY to enable "
                "memory and document retrieval"
            )

    @classmethod
    def get(cls) -> VectorIndex:
        """Return the shared VectorIndex instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _require_client(self) -> AsyncQdrantClient:
        if self._client is None:
            raise RuntimeError("Vector index is disabled")
        return self._client

    async def ensure_collection(self) -> None:
        """Create the collection and its payload indexes on first use."""
        if self._ready:
            return
        client = self._require_client()
        if not await client.collection_exists(self._collection):
            logger.info("Creating vector collection %s", self._collection)
            await client.create_collection(
                collection_name=self._collection,
                vectors_config=VectorParams(
                    size=settings.embedding_dimensions,
                    distance=Distance.COSINE,
                ),
            )
            for field_name in REQUIRED_FILTER_KEYS:
                await client.create_payload_index(
                    collection_name=self._collection,
                    field_name=field_name,
                    field_schema=PayloadSchemaType.KEYWORD,
                )
            await client.create_payload_index(
                collection_name=self._collection,
                field_name=TIMESTAMP_KEY,
                field_schema=PayloadSchemaType.INTEGER,
            )
        self._ready = True

    # -- Write ---------------------------------------------------------------

    async def upsert(self, point_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        """Insert or replace one point."""
        await self.ensure_collection()
        await self._require_client().upsert(
            collection_name=self._collection,
            points=[PointStruct(id=point_id, vector=vector, payload=metadata)],
        )

    # -- Read ----------------------------------------------------------------

    async def query(
        self, vector: list[float], conditions: dict[str, Any], k: int = 3
    ) -> list[ScoredPoint]:
        """Return the *k* nearest points matching *conditions* (no score floor)."""
        query_filter = build_filter(conditions)
        await self.ensure_collection()
        result = await self._require_client().query_points(
            collection_name=self._collection,
            query=vector,
            query_filter=query_filter,
            limit=k,
            with_payload=True,
        )
        return list(result.points)

    async def scroll(
        self,
        conditions: dict[str, Any],
        *,
        since: dict[str, float] | None = None,
        limit: int = 100,
    ) -> list[Record]:
        """Up to *limit* points matching *conditions*, in no particular order."""
        scroll_filter = build_filter(conditions, since)
        await self.ensure_collection()
        records, _ = await self._require_client().scroll(
            collection_name=self._collection,
            scroll_filter=scroll_filter,
            limit=limit,
            with_payload=True,
            with_vectors=False,
        )
        return list(records)
