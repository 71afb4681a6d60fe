"""SQLite storage backend for a persistent, single-host action log."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any

import aiosqlite

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
from action_graph.storage.sqlite_schema import apply_schema
from action_graph.utils.search_terms import to_match_query

logger = logging.getLogger(__name__)

# SQLite's default variable limit is generous, but keep IN (...) lists modest
_ANCHOR_CHUNK = 500

_RECORD_COLUMNS = """
    a.id AS id, a.type AS type, a.name AS name,
    a.parameters AS parameters, a.result AS result,
    a.status AS status, a.timestamp AS timestamp,
    u.id AS user_id, u.name AS user_name, u.created_at AS user_created_at,
    b.id AS backend_id, b.type AS backend_type, b.name AS backend_name,
    b.created_at AS backend_created_at
"""

_RECORD_JOINS = """
    JOIN relationships perf ON perf.type = 'PERFORMED' AND perf.end_id = a.id
    JOIN users u ON u.id = perf.start_id
    JOIN relationships used ON used.type = 'USED' AND used.start_id = a.id
    JOIN backends b ON b.id = used.end_id
"""

# Endpoint labels of each relationship type: (start, end)
_ENDPOINTS: dict[RelationshipType, tuple[NodeLabel, NodeLabel]] = {
    RelationshipType.PERFORMED: (NodeLabel.USER, NodeLabel.ACTION),
    RelationshipType.USED: (NodeLabel.ACTION, NodeLabel.BACKEND),
}


def _row_to_record(row: aiosqlite.Row) -> ActionRecord:
    return ActionRecord(
        id=row["id"],
        type=row["type"],
        name=row["name"],
        parameters=row["parameters"],
        result=row["result"],
        status=ActionStatus(row["status"]),
        timestamp=row["timestamp"],
        user=User(id=row["user_id"], name=row["user_name"], created_at=row["user_created_at"]),
        backend=Backend(
            id=row["backend_id"],
            type=row["backend_type"],
            name=row["backend_name"],
            created_at=row["backend_created_at"],
        ),
    )


class SQLiteActionStore(ActionGraphStore):
    """SQLite-based action log.

    Good for single-host deployment and local development. Each operation
    opens its own connection and closes it when done; WAL journaling lets
    concurrent readers proceed while a write is in flight.
    """

    name = "sqlite"

    def __init__(self, db_path: str | Path, *, timeout: float = 5.0) -> None:
        self._db_path = Path(db_path).expanduser().resolve()
        self._timeout = timeout
        self._has_fts = True
        self._closed = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    def describe(self) -> str:
        return f"sqlite:{self._db_path}"

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection for one logical operation."""
        if self._closed:
            raise StoreUnavailableError("SQLite store is closed")
        try:
            conn = await aiosqlite.connect(self._db_path, timeout=self._timeout)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot open {self._db_path}: {e}") from e

        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreQueryError(str(e)) from e
        finally:
            await conn.close()

    # ========== Lifecycle ==========

    async def verify_connectivity(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot create {self._db_path.parent}: {e}") from e
        try:
            async with self._session() as conn:
                await conn.execute("SELECT 1")
        except StoreQueryError as e:
            raise StoreUnavailableError(str(e)) from e

    async def initialize_schema(self) -> None:
        try:
            async with self._session() as conn:
                await conn.execute("PRAGMA journal_mode=WAL")
                self._has_fts = await apply_schema(conn)
        except StoreQueryError as e:
            raise SchemaError(f"Failed to apply SQLite schema: {e}") from e

    async def close(self) -> None:
        """Connections are per-operation; just refuse further work."""
        self._closed = True

    # ========== Writes ==========

    async def create_action(self, record: ActionRecord) -> str:
        async with self._session() as conn:
            try:
                await conn.execute(
                    """INSERT INTO users (id, name, created_at) VALUES (?, ?, ?)
                       ON CONFLICT(id) DO NOTHING""",
                    (record.user.id, record.user.name, record.user.created_at),
                )
                await conn.execute(
                    """INSERT INTO backends (id, type, name, created_at) VALUES (?, ?, ?, ?)
                       ON CONFLICT(id) DO NOTHING""",
                    (
                        record.backend.id,
                        record.backend.type,
                        record.backend.name,
                        record.backend.created_at,
                    ),
                )
                await conn.execute(
                    """INSERT INTO actions
                       (id, type, name, parameters, result, status, timestamp)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record.id,
                        record.type,
                        record.name,
                        record.parameters,
                        record.result,
                        record.status.value,
                        record.timestamp,
                    ),
                )
                await conn.executemany(
                    "INSERT INTO relationships (start_id, type, end_id) VALUES (?, ?, ?)",
                    [
                        (record.user.id, RelationshipType.PERFORMED.value, record.id),
                        (record.id, RelationshipType.USED.value, record.backend.id),
                    ],
                )
                await conn.commit()
            except sqlite3.Error:
                await conn.rollback()
                raise
        return record.id

    # ========== Reads ==========

    async def get_user(self, user_id: str) -> User | None:
        async with self._session() as conn:
            async with conn.execute(
                "SELECT id, name, created_at FROM users WHERE id = ?", (user_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return User(id=row["id"], name=row["name"], created_at=row["created_at"])

    async def get_backend(self, backend_id: str) -> Backend | None:
        async with self._session() as conn:
            async with conn.execute(
                "SELECT id, type, name, created_at FROM backends WHERE id = ?", (backend_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return Backend(
            id=row["id"], type=row["type"], name=row["name"], created_at=row["created_at"]
        )

    async def get_action(self, action_id: str) -> ActionRecord | None:
        async with self._session() as conn:
            async with conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM actions a {_RECORD_JOINS} WHERE a.id = ?",
                (action_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    async def find_candidate_actions(
        self,
        backend_type: str,
        action_type: str,
    ) -> list[ActionRecord]:
        async with self._session() as conn:
            async with conn.execute(
                f"""SELECT {_RECORD_COLUMNS}
                    FROM actions a {_RECORD_JOINS}
                    WHERE b.type = ? AND a.type = ?""",
                (backend_type, action_type),
            ) as cursor:
                return [_row_to_record(row) async for row in cursor]

    async def find_followup_actions(
        self,
        anchor_ids: Sequence[str],
        window: timedelta,
    ) -> list[tuple[str, ActionRecord]]:
        unique_ids = list(dict.fromkeys(anchor_ids))
        if not unique_ids:
            return []

        # Coarse bound with a second of slack; callers apply the exact window
        window_days = (window + timedelta(seconds=1)).total_seconds() / 86400

        pairs: list[tuple[str, ActionRecord]] = []
        async with self._session() as conn:
            for start in range(0, len(unique_ids), _ANCHOR_CHUNK):
                chunk = unique_ids[start : start + _ANCHOR_CHUNK]
                placeholders = ",".join("?" for _ in chunk)
                # Placeholders are generated and values are bound.
                query = f"""
                    SELECT anchor.id AS anchor_id, {_RECORD_COLUMNS}
                    FROM actions anchor
                    JOIN relationships anchor_perf
                        ON anchor_perf.type = 'PERFORMED' AND anchor_perf.end_id = anchor.id
                    JOIN relationships anchor_used
                        ON anchor_used.type = 'USED' AND anchor_used.start_id = anchor.id
                    JOIN actions a ON a.timestamp > anchor.timestamp
                    {_RECORD_JOINS}
                    WHERE anchor.id IN ({placeholders})
                      AND u.id = anchor_perf.start_id
                      AND b.id = anchor_used.end_id
                      AND julianday(a.timestamp) - julianday(anchor.timestamp) <= ?
                    ORDER BY a.timestamp ASC
                """
                async with conn.execute(query, [*chunk, window_days]) as cursor:
                    async for row in cursor:
                        pairs.append((row["anchor_id"], _row_to_record(row)))

        pairs.sort(key=lambda pair: pair[1].timestamp)
        return pairs

    async def search_actions(self, terms: Sequence[str]) -> list[ActionRecord]:
        if not terms:
            return []
        if not self._has_fts:
            logger.debug("Full-text search unavailable, returning no matches")
            return []

        async with self._session() as conn:
            async with conn.execute(
                f"""SELECT {_RECORD_COLUMNS}
                    FROM actions_fts
                    JOIN actions a ON a.rowid = actions_fts.rowid
                    {_RECORD_JOINS}
                    WHERE actions_fts MATCH ?
                    ORDER BY actions_fts.rank""",
                (to_match_query(list(terms)),),
            ) as cursor:
                return [_row_to_record(row) async for row in cursor]

    async def get_user_actions(self, user_id: str, limit: int) -> list[ActionRecord]:
        async with self._session() as conn:
            async with conn.execute(
                f"""SELECT {_RECORD_COLUMNS}
                    FROM actions a {_RECORD_JOINS}
                    WHERE u.id = ?
                    ORDER BY a.timestamp DESC
                    LIMIT ?""",
                (user_id, limit),
            ) as cursor:
                return [_row_to_record(row) async for row in cursor]

    async def get_subgraph(self, action_id: str, max_depth: int) -> GraphSlice:
        async with self._session() as conn:
            start = (NodeLabel.ACTION, action_id)
            if await self._load_node(conn, start) is None:
                return GraphSlice()

            seen: set[tuple[NodeLabel, str]] = {start}
            frontier: set[tuple[NodeLabel, str]] = {start}
            edges: set[GraphRelationship] = set()

            for _ in range(max_depth):
                next_frontier: set[tuple[NodeLabel, str]] = set()
                for node in frontier:
                    for rel in await self._edges_of(conn, node):
                        edges.add(rel)
                        start_label, end_label = _ENDPOINTS[rel.type]
                        for neighbor in ((start_label, rel.start_id), (end_label, rel.end_id)):
                            if neighbor not in seen:
                                seen.add(neighbor)
                                next_frontier.add(neighbor)
                frontier = next_frontier

            # Edges between nodes on the outer rim are part of the induced subgraph
            for node in frontier:
                for rel in await self._edges_of(conn, node):
                    start_label, end_label = _ENDPOINTS[rel.type]
                    if (start_label, rel.start_id) in seen and (end_label, rel.end_id) in seen:
                        edges.add(rel)

            nodes: list[GraphNode] = []
            for key in sorted(seen):
                node = await self._load_node(conn, key)
                if node is not None:
                    nodes.append(node)

        ordered_edges = sorted(edges, key=lambda r: (r.type, r.start_id, r.end_id))
        return GraphSlice(nodes=tuple(nodes), relationships=tuple(ordered_edges))

    async def _edges_of(
        self,
        conn: aiosqlite.Connection,
        node: tuple[NodeLabel, str],
    ) -> list[GraphRelationship]:
        label, node_id = node
        clauses: list[tuple[str, str]] = []
        if label == NodeLabel.USER:
            clauses.append(("PERFORMED", "start_id"))
        elif label == NodeLabel.ACTION:
            clauses.extend([("PERFORMED", "end_id"), ("USED", "start_id")])
        else:
            clauses.append(("USED", "end_id"))

        results: list[GraphRelationship] = []
        for rel_type, column in clauses:
            # Column names come from the fixed list above.
            async with conn.execute(
                f"SELECT start_id, type, end_id FROM relationships WHERE type = ? AND {column} = ?",
                (rel_type, node_id),
            ) as cursor:
                async for row in cursor:
                    results.append(
                        GraphRelationship(
                            type=RelationshipType(row["type"]),
                            start_id=row["start_id"],
                            end_id=row["end_id"],
                        )
                    )
        return results

    async def _load_node(
        self,
        conn: aiosqlite.Connection,
        node: tuple[NodeLabel, str],
    ) -> GraphNode | None:
        label, node_id = node
        properties: dict[str, Any]
        if label == NodeLabel.ACTION:
            async with conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM actions a {_RECORD_JOINS} WHERE a.id = ?",
                (node_id,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            properties = _row_to_record(row).properties()
        elif label == NodeLabel.USER:
            async with conn.execute(
                "SELECT id, name, created_at FROM users WHERE id = ?", (node_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            properties = User(row["id"], row["name"], row["created_at"]).to_dict()
        else:
            async with conn.execute(
                "SELECT id, type, name, created_at FROM backends WHERE id = ?", (node_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            properties = Backend(row["id"], row["type"], row["name"], row["created_at"]).to_dict()
        return GraphNode(label=label, id=node_id, properties=properties)

    async def count_relationships(self, action_id: str) -> dict[str, int]:
        async with self._session() as conn:
            async with conn.execute(
                """SELECT
                    (SELECT COUNT(*) FROM relationships
                     WHERE type = 'PERFORMED' AND end_id = ?) AS performed,
                    (SELECT COUNT(*) FROM relationships
                     WHERE type = 'USED' AND start_id = ?) AS used""",
                (action_id, action_id),
            ) as cursor:
                row = await cursor.fetchone()
        return {
            RelationshipType.PERFORMED.value: row["performed"] if row else 0,
            RelationshipType.USED.value: row["used"] if row else 0,
        }

    async def get_stats(self) -> dict[str, Any]:
        async with self._session() as conn:
            async with conn.execute(
                """SELECT
                    (SELECT COUNT(*) FROM users) AS users,
                    (SELECT COUNT(*) FROM backends) AS backends,
                    (SELECT COUNT(*) FROM actions) AS actions,
                    (SELECT COUNT(*) FROM actions WHERE status = 'success') AS successes
                """
            ) as cursor:
                row = await cursor.fetchone()

        total = row["actions"] if row else 0
        successes = row["successes"] if row else 0
        return {
            "users": row["users"] if row else 0,
            "backends": row["backends"] if row else 0,
            "actions": total,
            "success_rate": round(successes / total, 2) if total > 0 else 0,
        }
