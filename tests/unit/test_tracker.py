"""Tests for the ActionTracker lifecycle and operations."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from action_graph.config import StoreKind, StoreSettings, TrackerConfig
from action_graph.core.lifecycle import Disabled, Enabled, TrackerStatus
from action_graph.core.policy import TrackingPolicy
from action_graph.errors import SchemaError, StoreQueryError, StoreUnavailableError
from action_graph.storage.memory_store import InMemoryActionStore
from action_graph.storage.neo4j_store import Neo4jActionStore
from action_graph.tracker import NOT_CONNECTED_MESSAGE, ActionTracker
from action_graph.utils.timeutils import MonotonicClock

DDB = {
    "backend_id": "ddb-eu",
    "backend_type": "DynamoDB",
    "backend_name": "Orders DB",
}


def _action(
    action_type: str = "query",
    action_name: str = "query_table",
    parameters: Any = None,
    user_id: str = "u1",
    **overrides: Any,
) -> dict[str, Any]:
    fields = {
        "user_id": user_id,
        "user_name": user_id.upper(),
        **DDB,
        "action_type": action_type,
        "action_name": action_name,
        "parameters": parameters if parameters is not None else {"table": "orders"},
        "result": {"count": 1},
        "status": "success",
    }
    fields.update(overrides)
    return fields


class TestLifecycle:
    """State transitions."""

    def test_starts_uninitialized_with_store(self, memory_store: InMemoryActionStore) -> None:
        assert ActionTracker(memory_store).status == TrackerStatus.UNINITIALIZED

    def test_starts_disabled_without_store(self) -> None:
        tracker = ActionTracker()
        assert tracker.status == TrackerStatus.DISABLED
        assert not tracker.enabled

    async def test_connect_enables(self, memory_store: InMemoryActionStore) -> None:
        tracker = ActionTracker(memory_store)
        assert await tracker.connect() == TrackerStatus.ENABLED
        assert tracker.enabled
        assert isinstance(tracker.state, Enabled)

    async def test_connect_is_idempotent(self, memory_store: InMemoryActionStore) -> None:
        tracker = ActionTracker(memory_store)
        await asyncio.gather(tracker.connect(), tracker.connect())
        assert await tracker.connect() == TrackerStatus.ENABLED
        # verify + schema, once
        assert memory_store.session_count == 2

    async def test_unreachable_store_disables(self, memory_store: InMemoryActionStore) -> None:
        with patch.object(
            memory_store,
            "verify_connectivity",
            AsyncMock(side_effect=StoreUnavailableError("connection refused")),
        ):
            tracker = ActionTracker(memory_store)
            assert await tracker.connect() == TrackerStatus.DISABLED
        assert isinstance(tracker.state, Disabled)
        assert "connection refused" in tracker.state.reason

    async def test_schema_failure_disables(self, memory_store: InMemoryActionStore) -> None:
        with patch.object(
            memory_store, "initialize_schema", AsyncMock(side_effect=SchemaError("no perms"))
        ):
            tracker = ActionTracker(memory_store)
            assert await tracker.connect() == TrackerStatus.DISABLED

    async def test_disabled_never_recovers(self, memory_store: InMemoryActionStore) -> None:
        tracker = ActionTracker(memory_store)
        with patch.object(
            memory_store, "verify_connectivity", AsyncMock(side_effect=StoreUnavailableError("x"))
        ):
            await tracker.connect()
        # The store is healthy now, but the tracker stays off
        assert await tracker.connect() == TrackerStatus.DISABLED

    async def test_close_disables_and_is_repeatable(
        self, memory_store: InMemoryActionStore
    ) -> None:
        tracker = ActionTracker(memory_store)
        await tracker.connect()
        await tracker.close()
        await tracker.close()

        assert tracker.status == TrackerStatus.DISABLED
        result = await tracker.find_similar_actions("DynamoDB", "query", {})
        assert result["success"] is False

    async def test_close_from_disabled_is_noop(self) -> None:
        await ActionTracker().close()

    async def test_operations_before_connect(self, memory_store: InMemoryActionStore) -> None:
        tracker = ActionTracker(memory_store)
        result = await tracker.record_action(**_action())
        assert result == {"success": False, "message": NOT_CONNECTED_MESSAGE}
        assert memory_store.session_count == 0


class TestFromConfig:
    """Building a tracker from configuration."""

    def test_missing_credentials_disable_without_driver(self, tmp_path: Path) -> None:
        config = TrackerConfig(data_dir=tmp_path, store=StoreSettings(kind=StoreKind.NEO4J))
        with patch("action_graph.storage.neo4j_store.AsyncGraphDatabase") as graph_database:
            tracker = ActionTracker.from_config(config)
        assert tracker.status == TrackerStatus.DISABLED
        assert "credentials" in tracker.state.reason  # type: ignore[union-attr]
        graph_database.driver.assert_not_called()

    def test_neo4j_with_credentials_is_pending(self, tmp_path: Path) -> None:
        settings = StoreSettings(
            kind=StoreKind.NEO4J,
            neo4j_uri="neo4j://db:7687",
            neo4j_username="neo4j",
            neo4j_password="secret",
        )
        tracker = ActionTracker.from_config(TrackerConfig(data_dir=tmp_path, store=settings))
        assert tracker.status == TrackerStatus.UNINITIALIZED
        assert isinstance(tracker.state.store, Neo4jActionStore)  # type: ignore[union-attr]

    def test_invalid_policy_value_disables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ACTIONGRAPH_WINDOW_MINUTES", "thirty")
        tracker = ActionTracker.from_config()
        assert tracker.status == TrackerStatus.DISABLED
        assert "Invalid policy setting" in tracker.state.reason  # type: ignore[union-attr]

    def test_unknown_store_kind_disables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ACTIONGRAPH_STORE", "bogus")
        tracker = ActionTracker.from_config()
        assert tracker.status == TrackerStatus.DISABLED
        assert "Unknown store kind" in tracker.state.reason  # type: ignore[union-attr]

    async def test_disabled_by_bad_config_answers_uniformly(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ACTIONGRAPH_STORE", "bogus")
        tracker = ActionTracker.from_config()
        assert await tracker.connect() == TrackerStatus.DISABLED
        result = await tracker.get_stats()
        assert result["success"] is False

    async def test_sqlite_defaults_to_data_dir(self, tmp_path: Path) -> None:
        config = TrackerConfig(data_dir=tmp_path, store=StoreSettings(kind=StoreKind.SQLITE))
        tracker = ActionTracker.from_config(config)
        assert await tracker.connect() == TrackerStatus.ENABLED
        await tracker.close()
        assert (tmp_path / "actions.db").exists()


class TestDisabledMode:
    """A disabled tracker answers uniformly and never touches a store."""

    async def test_uniform_results_and_no_store_access(
        self, memory_store: InMemoryActionStore
    ) -> None:
        tracker = ActionTracker(memory_store)
        with patch.object(
            memory_store, "verify_connectivity", AsyncMock(side_effect=StoreUnavailableError("x"))
        ):
            await tracker.connect()
        before = memory_store.session_count

        recorded = await tracker.record_action(**_action())
        assert recorded["success"] is True
        assert recorded["actionId"]
        assert recorded["message"] == "Action tracking is disabled - action not recorded"

        queries = [
            await tracker.find_similar_actions("DynamoDB", "query", {}),
            await tracker.suggest_next_action("u1", "DynamoDB", "query", {}),
            await tracker.get_action_recommendations("u1", "orders"),
            await tracker.get_user_action_history("u1"),
            await tracker.get_related_actions("a1"),
            await tracker.get_stats(),
        ]
        for result in queries:
            assert result["success"] is False
            assert result["message"].startswith("Action tracking is disabled - ")

        assert memory_store.session_count == before
        assert memory_store._graph.number_of_nodes() == 0


class TestRecordAction:
    """Recording through the tracker."""

    async def test_records_with_fresh_id(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        first = await tracker.record_action(**_action())
        second = await tracker.record_action(**_action())

        assert first["success"] and second["success"]
        assert first["actionId"] != second["actionId"]
        assert (await memory_store.get_stats())["actions"] == 2

    async def test_unique_ids_under_concurrency(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        results = await asyncio.gather(*(tracker.record_action(**_action()) for _ in range(25)))

        ids = {r["actionId"] for r in results}
        assert len(ids) == 25
        for action_id in ids:
            assert await memory_store.count_relationships(action_id) == {
                "PERFORMED": 1,
                "USED": 1,
            }

    async def test_upsert_keeps_first_user_name(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        await tracker.record_action(**_action(user_name="First"))
        await tracker.record_action(**_action(user_name="Second"))

        user = await memory_store.get_user("u1")
        assert user is not None and user.name == "First"
        assert (await memory_store.get_stats())["users"] == 1

    async def test_timestamp_comes_from_clock(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore, manual_time: Any
    ) -> None:
        result = await tracker.record_action(**_action())
        stored = await memory_store.get_action(result["actionId"])
        assert stored is not None
        assert stored.timestamp == "2024-05-01T12:00:00.000000+00:00"

    async def test_timestamps_never_go_backwards(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore, manual_time: Any
    ) -> None:
        first = await tracker.record_action(**_action())
        manual_time.advance(minutes=-10)
        second = await tracker.record_action(**_action())

        a = await memory_store.get_action(first["actionId"])
        b = await memory_store.get_action(second["actionId"])
        assert a is not None and b is not None
        assert b.timestamp >= a.timestamp

    async def test_invalid_status_rejected_without_write(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        result = await tracker.record_action(**_action(status="maybe"))
        assert result["success"] is False
        assert "Invalid request" in result["message"]
        assert (await memory_store.get_stats())["actions"] == 0

    async def test_store_failure_is_reported(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        with patch.object(
            memory_store, "create_action", AsyncMock(side_effect=StoreQueryError("disk full"))
        ):
            result = await tracker.record_action(**_action())
        assert result == {"success": False, "message": "Failed to record action: disk full"}

    async def test_unexpected_error_does_not_escape(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        with patch.object(memory_store, "create_action", AsyncMock(side_effect=KeyError("x"))):
            result = await tracker.record_action(**_action())
        assert result["success"] is False

    async def test_background_recording(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        tasks = [tracker.record_action_background(**_action()) for _ in range(3)]
        await tracker.drain()

        assert all(t.done() for t in tasks)
        assert (await memory_store.get_stats())["actions"] == 3

    async def test_close_flushes_background_writes(
        self, memory_store: InMemoryActionStore
    ) -> None:
        tracker = ActionTracker(memory_store)
        await tracker.connect()
        tracker.record_action_background(**_action())
        await tracker.close()

        assert memory_store._graph.number_of_nodes() == 3


class TestQueries:
    """Query operations over recorded actions."""

    async def test_sequence_scenario(
        self, tracker: ActionTracker, manual_time: Any
    ) -> None:
        """A1 query, A2 export 10 minutes later, A3 export 40 minutes later."""
        a1_params = {"table": "orders", "key": "o-1"}
        await tracker.record_action(**_action(parameters=a1_params))
        manual_time.advance(minutes=10)
        await tracker.record_action(**_action("export", "export_csv", {"format": "csv"}))

        result = await tracker.suggest_next_action("u1", "DynamoDB", "query", a1_params)
        assert result["success"] is True
        assert result["suggestions"] == [
            {
                "actionType": "export",
                "actionName": "export_csv",
                "possibleParameters": [{"format": "csv"}],
                "frequency": 1,
            }
        ]

        manual_time.advance(minutes=30)
        await tracker.record_action(**_action("export", "export_csv", {"format": "csv"}))

        again = await tracker.suggest_next_action("u1", "DynamoDB", "query", a1_params)
        assert again["suggestions"][0]["frequency"] == 1

    async def test_suggestions_ignore_calling_user(
        self, tracker: ActionTracker, manual_time: Any
    ) -> None:
        """Suggestions are mined across all users; user_id does not filter them."""
        await tracker.record_action(**_action(user_id="alice"))
        manual_time.advance(minutes=1)
        await tracker.record_action(**_action("export", "export_csv", user_id="alice"))

        result = await tracker.suggest_next_action("bob", "DynamoDB", "query", {"table": "orders"})
        assert [s["actionName"] for s in result["suggestions"]] == ["export_csv"]

    async def test_recommendations_ignore_calling_user(self, tracker: ActionTracker) -> None:
        """Recommendations are not filtered by user_id either."""
        await tracker.record_action(**_action(user_id="alice", parameters={"table": "invoices"}))

        result = await tracker.get_action_recommendations("bob", "invoices")
        assert result["success"] is True
        assert result["recommendations"][0]["backendName"] == "Orders DB"

    async def test_find_similar(self, tracker: ActionTracker) -> None:
        await tracker.record_action(**_action(parameters={"table": "orders", "limit": 5}))

        result = await tracker.find_similar_actions(
            "DynamoDB", "query", {"table": "orders", "limit": 5}
        )
        [match] = result["similarActions"]
        assert match["similarity"] == 1.0
        assert match["action"]["parameters"] == {"table": "orders", "limit": 5}
        assert match["action"]["result"] == {"count": 1}
        assert match["backend"]["name"] == "Orders DB"

    async def test_find_similar_rejects_bad_limit(self, tracker: ActionTracker) -> None:
        result = await tracker.find_similar_actions("DynamoDB", "query", {}, limit=0)
        assert result["success"] is False

    async def test_empty_context_returns_empty(
        self, tracker: ActionTracker, memory_store: InMemoryActionStore
    ) -> None:
        before = memory_store.session_count
        result = await tracker.get_action_recommendations("u1", "")
        assert result == {"success": True, "recommendations": []}
        assert memory_store.session_count == before

    async def test_history(self, tracker: ActionTracker, manual_time: Any) -> None:
        for name in ("first", "second", "third"):
            await tracker.record_action(**_action(action_name=name))
            manual_time.advance(seconds=1)

        result = await tracker.get_user_action_history("u1", limit=2)
        assert [e["action"]["name"] for e in result["actions"]] == ["third", "second"]
        assert result["actions"][0]["backend"]["id"] == "ddb-eu"

    async def test_related(self, tracker: ActionTracker) -> None:
        recorded = await tracker.record_action(**_action())

        result = await tracker.get_related_actions(recorded["actionId"], max_depth=1)
        labels = sorted(n["label"] for n in result["graph"]["nodes"])
        assert labels == ["Action", "Backend", "User"]
        assert len(result["graph"]["relationships"]) == 2

    async def test_related_unknown_action(self, tracker: ActionTracker) -> None:
        result = await tracker.get_related_actions("missing")
        assert result == {"success": True, "graph": {"nodes": [], "relationships": []}}

    async def test_stats(self, tracker: ActionTracker) -> None:
        await tracker.record_action(**_action())
        await tracker.record_action(**_action(status="failure"))

        result = await tracker.get_stats()
        assert result["stats"] == {
            "users": 1,
            "backends": 1,
            "actions": 2,
            "success_rate": 0.5,
        }


async def test_custom_window_limits_suggestions(
    memory_store: InMemoryActionStore, manual_time: Any
) -> None:
    policy = TrackingPolicy(sequence_window=timedelta(minutes=5))
    tracker = ActionTracker(memory_store, policy=policy, clock=MonotonicClock(manual_time))
    await tracker.connect()

    await tracker.record_action(**_action())
    manual_time.advance(minutes=4)
    await tracker.record_action(**_action("export", "export_csv", {"format": "csv"}))
    manual_time.advance(minutes=2)
    await tracker.record_action(**_action("delete", "delete_item", {"key": "o-1"}))

    result = await tracker.suggest_next_action("u1", "DynamoDB", "query", {"table": "orders"})
    assert [s["actionName"] for s in result["suggestions"]] == ["export_csv"]
    await tracker.close()
