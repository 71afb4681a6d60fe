"""Tests for the Neo4j store against a mocked async driver."""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from neo4j.exceptions import ServiceUnavailable

from action_graph.core.action import NodeLabel, RelationshipType
from action_graph.errors import SchemaError, StoreQueryError, StoreUnavailableError
from action_graph.storage.neo4j_store import (
    FULLTEXT_INDEX,
    SCHEMA_STATEMENTS,
    Neo4jActionStore,
)


class FakeResult:
    """Stands in for neo4j.AsyncResult."""

    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows = rows or []
        self.consumed = False

    async def data(self) -> list[dict[str, Any]]:
        return self.rows

    async def single(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None

    async def consume(self) -> None:
        self.consumed = True


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.run = AsyncMock(return_value=FakeResult())
    return session


@pytest.fixture
def driver(session: MagicMock) -> MagicMock:
    driver = MagicMock()
    driver.session.return_value.__aenter__.return_value = session
    driver.session.return_value.__aexit__.return_value = False
    driver.verify_connectivity = AsyncMock()
    driver.close = AsyncMock()
    return driver


@pytest.fixture
def graph_database(driver: MagicMock) -> Any:
    with patch("action_graph.storage.neo4j_store.AsyncGraphDatabase") as graph_database:
        graph_database.driver.return_value = driver
        yield graph_database


@pytest.fixture
def store(graph_database: MagicMock) -> Neo4jActionStore:
    return Neo4jActionStore("neo4j://graph:7687", "neo4j", "secret", database="actions")


def _row(record: Any) -> dict[str, Any]:
    return {
        "action": record.properties(),
        "user": record.user.to_dict(),
        "backend": record.backend.to_dict(),
    }


class TestLifecycle:
    """Connectivity, schema, and close."""

    def test_describe_hides_credentials(self, store: Neo4jActionStore) -> None:
        assert store.describe() == "neo4j:neo4j://graph:7687/actions"
        assert "secret" not in store.describe()

    def test_driver_is_created_lazily(
        self, store: Neo4jActionStore, graph_database: MagicMock
    ) -> None:
        graph_database.driver.assert_not_called()

    async def test_verify_connectivity(
        self, store: Neo4jActionStore, graph_database: MagicMock, driver: MagicMock
    ) -> None:
        await store.verify_connectivity()
        graph_database.driver.assert_called_once_with(
            "neo4j://graph:7687", auth=("neo4j", "secret")
        )
        driver.verify_connectivity.assert_awaited_once()

    async def test_unreachable_server(self, store: Neo4jActionStore, driver: MagicMock) -> None:
        driver.verify_connectivity.side_effect = ServiceUnavailable("connection refused")
        with pytest.raises(StoreUnavailableError, match="connection refused"):
            await store.verify_connectivity()

    async def test_schema_creates_constraints_and_fulltext_index(
        self, store: Neo4jActionStore, session: MagicMock, driver: MagicMock
    ) -> None:
        await store.initialize_schema()

        queries = [c.args[0] for c in session.run.await_args_list]
        assert queries == SCHEMA_STATEMENTS
        assert all("IF NOT EXISTS" in q for q in queries)
        assert any(f"FULLTEXT INDEX {FULLTEXT_INDEX}" in q for q in queries)
        driver.session.assert_called_with(database="actions")

    async def test_schema_failure(self, store: Neo4jActionStore, session: MagicMock) -> None:
        session.run.side_effect = ServiceUnavailable("gone")
        with pytest.raises(SchemaError):
            await store.initialize_schema()

    async def test_close_releases_driver(self, store: Neo4jActionStore, driver: MagicMock) -> None:
        await store.verify_connectivity()
        await store.close()
        await store.close()

        driver.close.assert_awaited_once()
        with pytest.raises(StoreUnavailableError):
            await store.get_stats()


class TestWrites:
    """The atomic create-action write."""

    async def test_create_action_runs_in_write_transaction(
        self, store: Neo4jActionStore, session: MagicMock, record_factory: Any
    ) -> None:
        tx = MagicMock()
        tx.run = AsyncMock(return_value=FakeResult([{"id": "a1"}]))

        async def execute_write(fn: Any, *args: Any) -> Any:
            return await fn(tx, *args)

        session.execute_write = AsyncMock(side_effect=execute_write)
        record = record_factory("a1")

        assert await store.create_action(record) == "a1"

        query = tx.run.await_args.args[0]
        params = tx.run.await_args.kwargs
        assert "MERGE (u:User {id: $user_id})" in query
        assert "ON CREATE SET" in query
        assert "CREATE (u)-[:PERFORMED]->(a)" in query
        assert "CREATE (a)-[:USED]->(b)" in query
        assert params["action"] == record.properties()
        assert params["backend_type"] == "DynamoDB"

    async def test_write_failure(
        self, store: Neo4jActionStore, session: MagicMock, record_factory: Any
    ) -> None:
        session.execute_write = AsyncMock(side_effect=ServiceUnavailable("lost"))
        with pytest.raises(StoreQueryError):
            await store.create_action(record_factory("a1"))


class TestReads:
    """Row mapping and query parameters."""

    async def test_get_action_maps_row(
        self, store: Neo4jActionStore, session: MagicMock, record_factory: Any
    ) -> None:
        record = record_factory("a1", parameters={"table": "orders"})
        session.run.return_value = FakeResult([_row(record)])

        assert await store.get_action("a1") == record

    async def test_get_action_missing(self, store: Neo4jActionStore) -> None:
        assert await store.get_action("missing") is None

    async def test_followups_pass_window_in_milliseconds(
        self, store: Neo4jActionStore, session: MagicMock, record_factory: Any
    ) -> None:
        successor = record_factory("a2", action_type="export")
        session.run.return_value = FakeResult([{"anchor_id": "a1", **_row(successor)}])

        pairs = await store.find_followup_actions(["a1", "a1"], timedelta(minutes=30))

        assert pairs == [("a1", successor)]
        params = session.run.await_args.args[1]
        assert params == {"anchor_ids": ["a1"], "window_ms": 1_800_000}

    async def test_sub_second_window_is_not_truncated(
        self, store: Neo4jActionStore, session: MagicMock
    ) -> None:
        await store.find_followup_actions(["a1"], timedelta(microseconds=1500))
        assert session.run.await_args.args[1]["window_ms"] == 2

    async def test_search_uses_fulltext_index(
        self, store: Neo4jActionStore, session: MagicMock
    ) -> None:
        await store.search_actions(["orders", "export"])

        query, params = session.run.await_args.args
        assert "db.index.fulltext.queryNodes" in query
        assert params == {"index": FULLTEXT_INDEX, "query": '"orders" OR "export"'}

    async def test_search_without_terms_skips_query(
        self, store: Neo4jActionStore, session: MagicMock
    ) -> None:
        assert await store.search_actions([]) == []
        session.run.assert_not_awaited()

    async def test_subgraph(self, store: Neo4jActionStore, session: MagicMock) -> None:
        session.run.side_effect = [
            FakeResult(
                [
                    {"labels": ["Action"], "props": {"id": "a1", "name": "q"}, "element_id": "e1"},
                    {"labels": ["User"], "props": {"id": "u1", "name": "U"}, "element_id": "e2"},
                ]
            ),
            FakeResult([{"type": "PERFORMED", "start_id": "u1", "end_id": "a1"}]),
        ]

        graph = await store.get_subgraph("a1", max_depth=2)

        assert [(n.label, n.id) for n in graph.nodes] == [
            (NodeLabel.ACTION, "a1"),
            (NodeLabel.USER, "u1"),
        ]
        assert [(r.type, r.start_id, r.end_id) for r in graph.relationships] == [
            (RelationshipType.PERFORMED, "u1", "a1")
        ]
        first_query = session.run.await_args_list[0].args[0]
        assert "*1..2" in first_query
        assert session.run.await_args_list[1].args[1] == {"ids": ["e1", "e2"]}

    async def test_subgraph_missing_action(
        self, store: Neo4jActionStore, session: MagicMock
    ) -> None:
        graph = await store.get_subgraph("missing", max_depth=2)
        assert graph.nodes == ()
        assert session.run.await_count == 1

    async def test_stats(self, store: Neo4jActionStore, session: MagicMock) -> None:
        session.run.return_value = FakeResult(
            [{"users": 2, "backends": 1, "actions": 4, "successes": 3}]
        )
        assert await store.get_stats() == {
            "users": 2,
            "backends": 1,
            "actions": 4,
            "success_rate": 0.75,
        }

    async def test_query_failure(self, store: Neo4jActionStore, session: MagicMock) -> None:
        session.run.side_effect = ServiceUnavailable("down")
        with pytest.raises(StoreQueryError, match="down"):
            await store.get_user("u1")
