"""Tests for VectorIndex: Qdrant collection handling and filters."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from qdrant_client.models import Distance, PayloadSchemaType

from sprout.memory.index import MEMORY_TYPE, VectorIndex, build_filter


def _client(exists: bool = True) -> AsyncMock:
    client = AsyncMock()
    client.collection_exists.return_value = exists
    client.query_points.return_value = MagicMock(points=["p1", "p2"])
    return client


class TestBuildFilter:
    def test_conditions(self):
        query_filter = build_filter({"child_id": "c1", "type": MEMORY_TYPE})
        keys = [cond.key for cond in query_filter.must]
        assert keys == ["child_id", "type"]
        assert query_filter.must[0].match.value == "c1"

    def test_requires_child_id(self):
        with pytest.raises(ValueError, match="child_id"):
            build_filter({"type": MEMORY_TYPE})

    def test_requires_type(self):
        with pytest.raises(ValueError, match="type"):
            build_filter({"child_id": "c1", "type": ""})


def test_disabled_without_settings() -> None:
    index = VectorIndex.get()
    assert not index.enabled
    assert VectorIndex.get() is index


async def test_creates_missing_collection() -> None:
    client = _client(exists=False)
    index = VectorIndex(client=client, collection="test")

    await index.ensure_collection()
    await index.ensure_collection()

    client.collection_exists.assert_awaited_once_with("test")
    create_kwargs = client.create_collection.call_args.kwargs
    assert create_kwargs["vectors_config"].distance == Distance.COSINE
    indexed = [c.kwargs["field_name"] for c in client.create_payload_index.call_args_list]
    assert indexed == ["child_id", "type", "session_timestamp"]
    schemas = [c.kwargs["field_schema"] for c in client.create_payload_index.call_args_list]
    assert schemas == [
        PayloadSchemaType.KEYWORD,
        PayloadSchemaType.KEYWORD,
        PayloadSchemaType.INTEGER,
    ]


async def test_existing_collection_is_left_alone() -> None:
    client = _client(exists=True)
    await VectorIndex(client=client).ensure_collection()
    client.create_collection.assert_not_called()


async def test_upsert() -> None:
    client = _client()
    index = VectorIndex(client=client, collection="test")
    await index.upsert("pid", [0.1, 0.2], {"child_id": "c1"})

    kwargs = client.upsert.call_args.kwargs
    assert kwargs["collection_name"] == "test"
    point = kwargs["points"][0]
    assert point.id == "pid"
    assert point.payload == {"child_id": "c1"}


async def test_query_filters_and_limits() -> None:
    client = _client()
    index = VectorIndex(client=client, collection="test")
    points = await index.query([0.1], {"child_id": "c1", "type": MEMORY_TYPE}, k=2)

    assert points == ["p1", "p2"]
    kwargs = client.query_points.call_args.kwargs
    assert kwargs["limit"] == 2
    assert kwargs["query"] == [0.1]
    assert len(kwargs["query_filter"].must) == 2


async def test_scroll_with_time_range() -> None:
    client = _client()
    client.scroll.return_value = (["r1"], None)
    index = VectorIndex(client=client, collection="test")

    records = await index.scroll(
        {"child_id": "c1", "type": MEMORY_TYPE}, since={"session_timestamp": 1000}, limit=50
    )

    assert records == ["r1"]
    kwargs = client.scroll.call_args.kwargs
    assert kwargs["limit"] == 50
    assert kwargs["with_vectors"] is False
    last = kwargs["scroll_filter"].must[-1]
    assert last.key == "session_timestamp"
    assert last.range.gte == 1000


async def test_query_rejects_missing_filter_before_calling_backend() -> None:
    client = _client()
    with pytest.raises(ValueError):
        await VectorIndex(client=client).query([0.1], {"child_id": "c1"})
    client.query_points.assert_not_called()


async def test_disabled_index_refuses_writes() -> None:
    with pytest.raises(RuntimeError, match="disabled"):
        await VectorIndex.get().upsert("pid", [0.1], {})
