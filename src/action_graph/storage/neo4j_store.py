"""Neo4j storage backend using the official async driver."""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction, AsyncSession
from neo4j.exceptions import DriverError, Neo4jError

from action_graph.core.action import (
    ActionRecord,
    ActionStatus,
    Backend,
    GraphNode,
    GraphRelationship,
    GraphSlice,
    NodeLabel,
    RelationshipType,
    User,
)
from action_graph.errors import SchemaError, StoreQueryError, StoreUnavailableError
from action_graph.storage.base import ActionGraphStore
from action_graph.utils.search_terms import to_match_query

logger = logging.getLogger(__name__)

FULLTEXT_INDEX = "actionContext"

SCHEMA_STATEMENTS: list[str] = [
    "CREATE CONSTRAINT user_id IF NOT EXISTS FOR (u:User) REQUIRE u.id IS UNIQUE",
    "CREATE CONSTRAINT action_id IF NOT EXISTS FOR (a:Action) REQUIRE a.id IS UNIQUE",
    "CREATE CONSTRAINT backend_id IF NOT EXISTS FOR (b:Backend) REQUIRE b.id IS UNIQUE",
    "CREATE INDEX action_timestamp IF NOT EXISTS FOR (a:Action) ON (a.timestamp)",
    "CREATE INDEX action_type IF NOT EXISTS FOR (a:Action) ON (a.type)",
    "CREATE INDEX backend_type IF NOT EXISTS FOR (b:Backend) ON (b.type)",
    f"""CREATE FULLTEXT INDEX {FULLTEXT_INDEX} IF NOT EXISTS
        FOR (a:Action) ON EACH [a.name, a.type, a.parameters]""",
]

_CREATE_ACTION = """
MERGE (u:User {id: $user_id})
  ON CREATE SET u.name = $user_name, u.createdAt = $user_created_at
MERGE (b:Backend {id: $backend_id})
  ON CREATE SET b.type = $backend_type, b.name = $backend_name,
                b.createdAt = $backend_created_at
CREATE (a:Action $action)
CREATE (u)-[:PERFORMED]->(a)
CREATE (a)-[:USED]->(b)
RETURN a.id AS id
"""

_RETURN_RECORD = "RETURN a {.*} AS action, u {.*} AS user, b {.*} AS backend"


def _to_record(
    action: dict[str, Any], user: dict[str, Any], backend: dict[str, Any]
) -> ActionRecord:
    return ActionRecord(
        id=action["id"],
        type=action["type"],
        name=action["name"],
        parameters=action["parameters"],
        result=action["result"],
        status=ActionStatus(action["status"]),
        timestamp=action["timestamp"],
        user=User(id=user["id"], name=user.get("name", ""), created_at=user.get("createdAt", "")),
        backend=Backend(
            id=backend["id"],
            type=backend.get("type", ""),
            name=backend.get("name", ""),
            created_at=backend.get("createdAt", ""),
        ),
    )


def _row_to_record(row: dict[str, Any]) -> ActionRecord:
    return _to_record(row["action"], row["user"], row["backend"])


class Neo4jActionStore(ActionGraphStore):
    """Neo4j-backed action graph.

    The driver is created lazily on first use. Every operation runs in its
    own ``AsyncSession``; the driver's connection pool does the rest.
    """

    name = "neo4j"

    def __init__(
        self,
        uri: str,
        username: str,
        password: str,
        *,
        database: str | None = None,
    ) -> None:
        self._uri = uri
        self._auth = (username, password)
        self._database = database
        self._driver: AsyncDriver | None = None
        self._closed = False

    def describe(self) -> str:
        target = f"neo4j:{self._uri}"
        if self._database:
            target += f"/{self._database}"
        return target

    def _get_driver(self) -> AsyncDriver:
        if self._closed:
            raise StoreUnavailableError("Neo4j store is closed")
        if self._driver is None:
            try:
                self._driver = AsyncGraphDatabase.driver(self._uri, auth=self._auth)
            except (DriverError, ValueError) as e:
                raise StoreUnavailableError(f"Invalid Neo4j target {self._uri}: {e}") from e
        return self._driver

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a session for one logical operation."""
        driver = self._get_driver()
        try:
            async with driver.session(database=self._database) as session:
                yield session
        except (Neo4jError, DriverError) as e:
            raise StoreQueryError(str(e)) from e

    async def _fetch(self, cypher: str, /, **params: Any) -> list[dict[str, Any]]:
        async with self._session() as session:
            result = await session.run(cypher, params)
            return await result.data()

    # ========== Lifecycle ==========

    async def verify_connectivity(self) -> None:
        driver = self._get_driver()
        try:
            await driver.verify_connectivity()
        except (Neo4jError, DriverError, OSError) as e:
            raise StoreUnavailableError(f"Cannot reach {self.describe()}: {e}") from e

    async def initialize_schema(self) -> None:
        try:
            async with self._session() as session:
                for statement in SCHEMA_STATEMENTS:
                    result = await session.run(statement)
                    await result.consume()
            logger.debug(
                "Applied %d schema statements to %s", len(SCHEMA_STATEMENTS), self.describe()
            )
        except StoreQueryError as e:
            raise SchemaError(f"Failed to apply Neo4j schema: {e}") from e

    async def close(self) -> None:
        self._closed = True
        if self._driver is not None:
            driver, self._driver = self._driver, None
            await driver.close()

    # ========== Writes ==========

    @staticmethod
    async def _create_action_tx(tx: AsyncManagedTransaction, record: ActionRecord) -> str:
        result = await tx.run(
            _CREATE_ACTION,
            user_id=record.user.id,
            user_name=record.user.name,
            user_created_at=record.user.created_at,
            backend_id=record.backend.id,
            backend_type=record.backend.type,
            backend_name=record.backend.name,
            backend_created_at=record.backend.created_at,
            action=record.properties(),
        )
        row = await result.single()
        if row is None:
            raise StoreQueryError(f"Action {record.id} was not created")
        return str(row["id"])

    async def create_action(self, record: ActionRecord) -> str:
        async with self._session() as session:
            return await session.execute_write(self._create_action_tx, record)

    # ========== Reads ==========

    async def get_user(self, user_id: str) -> User | None:
        rows = await self._fetch("MATCH (u:User {id: $id}) RETURN u {.*} AS user", id=user_id)
        if not rows:
            return None
        props = rows[0]["user"]
        return User(
            id=props["id"], name=props.get("name", ""), created_at=props.get("createdAt", "")
        )

    async def get_backend(self, backend_id: str) -> Backend | None:
        rows = await self._fetch(
            "MATCH (b:Backend {id: $id}) RETURN b {.*} AS backend", id=backend_id
        )
        if not rows:
            return None
        props = rows[0]["backend"]
        return Backend(
            id=props["id"],
            type=props.get("type", ""),
            name=props.get("name", ""),
            created_at=props.get("createdAt", ""),
        )

    async def get_action(self, action_id: str) -> ActionRecord | None:
        rows = await self._fetch(
            f"""MATCH (u:User)-[:PERFORMED]->(a:Action {{id: $id}})-[:USED]->(b:Backend)
                {_RETURN_RECORD}""",
            id=action_id,
        )
        return _row_to_record(rows[0]) if rows else None

    async def find_candidate_actions(
        self,
        backend_type: str,
        action_type: str,
    ) -> list[ActionRecord]:
        rows = await self._fetch(
            f"""MATCH (u:User)-[:PERFORMED]->(a:Action {{type: $action_type}})
                      -[:USED]->(b:Backend {{type: $backend_type}})
                {_RETURN_RECORD}""",
            action_type=action_type,
            backend_type=backend_type,
        )
        return [_row_to_record(row) for row in rows]

    async def find_followup_actions(
        self,
        anchor_ids: Sequence[str],
        window: timedelta,
    ) -> list[tuple[str, ActionRecord]]:
        unique_ids = list(dict.fromkeys(anchor_ids))
        if not unique_ids:
            return []

        rows = await self._fetch(
            f"""MATCH (u:User)-[:PERFORMED]->(anchor:Action)-[:USED]->(b:Backend)
                WHERE anchor.id IN $anchor_ids
                MATCH (u)-[:PERFORMED]->(a:Action)-[:USED]->(b)
                WHERE datetime(a.timestamp) > datetime(anchor.timestamp)
                  AND datetime(a.timestamp) <= datetime(anchor.timestamp)
                      + duration({{milliseconds: $window_ms}})
                WITH anchor, a, u, b
                ORDER BY a.timestamp ASC
                RETURN anchor.id AS anchor_id, a {{.*}} AS action,
                       u {{.*}} AS user, b {{.*}} AS backend""",
            anchor_ids=unique_ids,
            window_ms=math.ceil(window / timedelta(milliseconds=1)),
        )
        return [(row["anchor_id"], _row_to_record(row)) for row in rows]

    async def search_actions(self, terms: Sequence[str]) -> list[ActionRecord]:
        if not terms:
            return []
        rows = await self._fetch(
            f"""CALL db.index.fulltext.queryNodes($index, $query) YIELD node, score
                MATCH (u:User)-[:PERFORMED]->(node)-[:USED]->(b:Backend)
                WITH node AS a, u, b, score
                ORDER BY score DESC
                {_RETURN_RECORD}""",
            index=FULLTEXT_INDEX,
            query=to_match_query(list(terms)),
        )
        return [_row_to_record(row) for row in rows]

    async def get_user_actions(self, user_id: str, limit: int) -> list[ActionRecord]:
        rows = await self._fetch(
            f"""MATCH (u:User {{id: $user_id}})-[:PERFORMED]->(a:Action)-[:USED]->(b:Backend)
                WITH u, a, b
                ORDER BY a.timestamp DESC
                LIMIT $limit
                {_RETURN_RECORD}""",
            user_id=user_id,
            limit=limit,
        )
        return [_row_to_record(row) for row in rows]

    async def get_subgraph(self, action_id: str, max_depth: int) -> GraphSlice:
        depth = max(int(max_depth), 0)
        if depth == 0:
            reach = "WITH [start] AS found"
        else:
            # Variable-length bounds cannot be parameters; depth is an int.
            reach = f"""OPTIONAL MATCH (start)-[:PERFORMED|USED*1..{depth}]-(n)
                WITH start, collect(DISTINCT n) AS reached
                WITH [start] + reached AS found"""

        async with self._session() as session:
            result = await session.run(
                f"""MATCH (start:Action {{id: $id}})
                    {reach}
                    UNWIND found AS node
                    WITH DISTINCT node
                    RETURN labels(node) AS labels, properties(node) AS props,
                           elementId(node) AS element_id""",
                {"id": action_id},
            )
            node_rows = await result.data()
            if not node_rows:
                return GraphSlice()

            result = await session.run(
                """MATCH (s)-[r:PERFORMED|USED]->(e)
                   WHERE elementId(s) IN $ids AND elementId(e) IN $ids
                   RETURN type(r) AS type, s.id AS start_id, e.id AS end_id""",
                {"ids": [row["element_id"] for row in node_rows]},
            )
            edge_rows = await result.data()

        nodes = sorted(
            (
                GraphNode(
                    label=NodeLabel(row["labels"][0]),
                    id=row["props"]["id"],
                    properties=dict(row["props"]),
                )
                for row in node_rows
            ),
            key=lambda node: (node.label, node.id),
        )
        relationships = sorted(
            (
                GraphRelationship(
                    type=RelationshipType(row["type"]),
                    start_id=row["start_id"],
                    end_id=row["end_id"],
                )
                for row in edge_rows
            ),
            key=lambda r: (r.type, r.start_id, r.end_id),
        )
        return GraphSlice(nodes=tuple(nodes), relationships=tuple(relationships))

    async def count_relationships(self, action_id: str) -> dict[str, int]:
        rows = await self._fetch(
            """MATCH (a:Action {id: $id})
               RETURN COUNT { (:User)-[:PERFORMED]->(a) } AS performed,
                      COUNT { (a)-[:USED]->(:Backend) } AS used""",
            id=action_id,
        )
        row = rows[0] if rows else {"performed": 0, "used": 0}
        return {
            RelationshipType.PERFORMED.value: row["performed"],
            RelationshipType.USED.value: row["used"],
        }

    async def get_stats(self) -> dict[str, Any]:
        rows = await self._fetch(
            """CALL { MATCH (u:User) RETURN count(u) AS users }
               CALL { MATCH (b:Backend) RETURN count(b) AS backends }
               CALL { MATCH (a:Action)
                      RETURN count(a) AS actions,
                             count(CASE WHEN a.status = 'success' THEN 1 END) AS successes }
               RETURN users, backends, actions, successes"""
        )
        row = rows[0] if rows else {"users": 0, "backends": 0, "actions": 0, "successes": 0}
        total = row["actions"]
        return {
            "users": row["users"],
            "backends": row["backends"],
            "actions": total,
            "success_rate": round(row["successes"] / total, 2) if total > 0 else 0,
        }
