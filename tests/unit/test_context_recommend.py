"""Tests for the context recommendation engine."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

from action_graph.core.policy import TrackingPolicy
from action_graph.engine.context_recommend import aggregate_matches, recommend_actions
from action_graph.storage.memory_store import InMemoryActionStore


def test_groups_by_backend_and_action(record_factory: Any) -> None:
    matches = [
        record_factory("a1", parameters={"table": "orders"}),
        record_factory("a2", parameters={"table": "orders"}),
        record_factory("a3", parameters={"table": "users"}),
        record_factory("a4", backend_id="s3", backend_type="S3", backend_name="Exports"),
    ]

    groups = aggregate_matches(matches)

    assert [(g.backend_type, g.frequency) for g in groups] == [("DynamoDB", 3), ("S3", 1)]
    assert groups[0].parameter_samples == ({"table": "orders"}, {"table": "users"})
    assert groups[0].to_dict() == {
        "backendType": "DynamoDB",
        "backendName": "Orders DB",
        "actionType": "query",
        "actionName": "query_table",
        "parameterSamples": [{"table": "orders"}, {"table": "users"}],
        "frequency": 3,
    }


def test_same_type_different_backend_names_are_separate(record_factory: Any) -> None:
    matches = [
        record_factory("a1", backend_id="ddb-1", backend_name="Orders DB"),
        record_factory("a2", backend_id="ddb-2", backend_name="Users DB"),
    ]
    assert len(aggregate_matches(matches)) == 2


async def test_empty_context_skips_store() -> None:
    store = AsyncMock()
    assert await recommend_actions(store, TrackingPolicy(), "   ") == []
    store.search_actions.assert_not_awaited()


async def test_no_matches(memory_store: InMemoryActionStore, record_factory: Any) -> None:
    await memory_store.create_action(record_factory("a1"))
    assert await recommend_actions(memory_store, TrackingPolicy(), "kinesis stream") == []


async def test_matches_name_type_and_parameters(
    memory_store: InMemoryActionStore, record_factory: Any
) -> None:
    await memory_store.create_action(record_factory("a1", parameters={"table": "invoices"}))
    await memory_store.create_action(
        record_factory("a2", action_type="export", action_name="export_csv", parameters={})
    )

    by_param = await recommend_actions(memory_store, TrackingPolicy(), "invoices")
    by_name = await recommend_actions(memory_store, TrackingPolicy(), "csv")
    by_type = await recommend_actions(memory_store, TrackingPolicy(), "export")

    assert [r.action_name for r in by_param] == ["query_table"]
    assert [r.action_name for r in by_name] == ["export_csv"]
    assert [r.action_name for r in by_type] == ["export_csv"]


async def test_capped_at_max_recommendations(
    memory_store: InMemoryActionStore, record_factory: Any
) -> None:
    for i in range(7):
        await memory_store.create_action(
            record_factory(f"a{i}", action_name=f"orders_op{i}", parameters={"table": "orders"})
        )

    recommendations = await recommend_actions(memory_store, TrackingPolicy(), "orders")
    assert len(recommendations) == 5
