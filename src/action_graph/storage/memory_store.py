"""In-memory storage backend using NetworkX."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

import networkx as nx

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
from action_graph.errors import StoreQueryError, StoreUnavailableError
from action_graph.storage.base import ActionGraphStore
from action_graph.utils.search_terms import extract_terms
from action_graph.utils.timeutils import parse_timestamp

NodeKey = tuple[NodeLabel, str]


class InMemoryActionStore(ActionGraphStore):
    """NetworkX-based in-memory store for development and testing.

    Nodes are keyed by ``(label, id)`` so a user and a backend may share an
    ID without colliding. Data is lost when the process exits.

    ``session_count`` counts every logical session opened, which lets tests
    assert that a disabled tracker never reached the store.
    """

    name = "memory"

    def __init__(self) -> None:
        self._graph = nx.MultiDiGraph()
        self._write_lock = asyncio.Lock()
        self._closed = False
        self.session_count = 0

    def _open_session(self) -> None:
        if self._closed:
            raise StoreUnavailableError("In-memory store is closed")
        self.session_count += 1

    # ========== Lifecycle ==========

    async def verify_connectivity(self) -> None:
        self._open_session()

    async def initialize_schema(self) -> None:
        # Uniqueness is structural: node keys are (label, id)
        self._open_session()

    async def close(self) -> None:
        self._closed = True

    # ========== Writes ==========

    async def create_action(self, record: ActionRecord) -> str:
        self._open_session()
        async with self._write_lock:
            action_key: NodeKey = (NodeLabel.ACTION, record.id)
            if action_key in self._graph:
                raise StoreQueryError(f"Action {record.id} already exists")

            user_key: NodeKey = (NodeLabel.USER, record.user.id)
            if user_key not in self._graph:
                self._graph.add_node(user_key, data=record.user)

            backend_key: NodeKey = (NodeLabel.BACKEND, record.backend.id)
            if backend_key not in self._graph:
                self._graph.add_node(backend_key, data=record.backend)

            self._graph.add_node(action_key, data=record)
            self._graph.add_edge(user_key, action_key, key=RelationshipType.PERFORMED)
            self._graph.add_edge(action_key, backend_key, key=RelationshipType.USED)
        return record.id

    # ========== Reads ==========

    def _record(self, action_key: NodeKey) -> ActionRecord:
        """Rebuild an action joined to the *stored* user and backend nodes."""
        stored: ActionRecord = self._graph.nodes[action_key]["data"]
        user_key = next(
            u
            for u, _, k in self._graph.in_edges(action_key, keys=True)
            if k == RelationshipType.PERFORMED
        )
        backend_key = next(
            v
            for _, v, k in self._graph.out_edges(action_key, keys=True)
            if k == RelationshipType.USED
        )
        return ActionRecord(
            id=stored.id,
            type=stored.type,
            name=stored.name,
            parameters=stored.parameters,
            result=stored.result,
            status=stored.status,
            timestamp=stored.timestamp,
            user=self._graph.nodes[user_key]["data"],
            backend=self._graph.nodes[backend_key]["data"],
        )

    def _action_keys(self) -> list[NodeKey]:
        return [key for key in self._graph.nodes if key[0] == NodeLabel.ACTION]

    async def get_user(self, user_id: str) -> User | None:
        self._open_session()
        key = (NodeLabel.USER, user_id)
        if key not in self._graph:
            return None
        return self._graph.nodes[key]["data"]

    async def get_backend(self, backend_id: str) -> Backend | None:
        self._open_session()
        key = (NodeLabel.BACKEND, backend_id)
        if key not in self._graph:
            return None
        return self._graph.nodes[key]["data"]

    async def get_action(self, action_id: str) -> ActionRecord | None:
        self._open_session()
        key = (NodeLabel.ACTION, action_id)
        if key not in self._graph:
            return None
        return self._record(key)

    async def find_candidate_actions(
        self,
        backend_type: str,
        action_type: str,
    ) -> list[ActionRecord]:
        self._open_session()
        results: list[ActionRecord] = []
        for key in self._action_keys():
            record = self._record(key)
            if record.type == action_type and record.backend.type == backend_type:
                results.append(record)
        return results

    async def find_followup_actions(
        self,
        anchor_ids: Sequence[str],
        window: timedelta,
    ) -> list[tuple[str, ActionRecord]]:
        self._open_session()
        pairs: list[tuple[str, ActionRecord]] = []
        for anchor_id in dict.fromkeys(anchor_ids):
            anchor_key = (NodeLabel.ACTION, anchor_id)
            if anchor_key not in self._graph:
                continue
            anchor = self._record(anchor_key)
            anchor_time = parse_timestamp(anchor.timestamp)
            user_key = (NodeLabel.USER, anchor.user.id)

            for _, next_key, rel in self._graph.out_edges(user_key, keys=True):
                if rel != RelationshipType.PERFORMED or next_key == anchor_key:
                    continue
                candidate = self._record(next_key)
                if candidate.backend.id != anchor.backend.id:
                    continue
                gap = parse_timestamp(candidate.timestamp) - anchor_time
                if timedelta(0) < gap <= window:
                    pairs.append((anchor_id, candidate))

        pairs.sort(key=lambda pair: pair[1].timestamp)
        return pairs

    async def search_actions(self, terms: Sequence[str]) -> list[ActionRecord]:
        self._open_session()
        wanted = set(terms)
        if not wanted:
            return []

        scored: list[tuple[int, ActionRecord]] = []
        for key in self._action_keys():
            record = self._record(key)
            text = f"{record.name} {record.type} {record.parameters}"
            hits = len(wanted.intersection(extract_terms(text, limit=None)))
            if hits:
                scored.append((hits, record))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [record for _, record in scored]

    async def get_user_actions(self, user_id: str, limit: int) -> list[ActionRecord]:
        self._open_session()
        user_key = (NodeLabel.USER, user_id)
        if user_key not in self._graph:
            return []
        records = [
            self._record(action_key)
            for _, action_key, rel in self._graph.out_edges(user_key, keys=True)
            if rel == RelationshipType.PERFORMED
        ]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]

    async def get_subgraph(self, action_id: str, max_depth: int) -> GraphSlice:
        self._open_session()
        start = (NodeLabel.ACTION, action_id)
        if start not in self._graph:
            return GraphSlice()

        reachable = nx.single_source_shortest_path_length(
            self._graph.to_undirected(as_view=True), start, cutoff=max_depth
        )
        sub = self._graph.subgraph(reachable)

        nodes = tuple(self._node(key) for key in sorted(reachable, key=lambda k: (k[0], k[1])))
        relationships = tuple(
            GraphRelationship(type=RelationshipType(rel), start_id=u[1], end_id=v[1])
            for u, v, rel in sub.edges(keys=True)
        )
        return GraphSlice(nodes=nodes, relationships=relationships)

    def _node(self, key: NodeKey) -> GraphNode:
        label, node_id = key
        data = self._graph.nodes[key]["data"]
        properties = data.properties() if label == NodeLabel.ACTION else data.to_dict()
        return GraphNode(label=label, id=node_id, properties=properties)

    async def count_relationships(self, action_id: str) -> dict[str, int]:
        self._open_session()
        key = (NodeLabel.ACTION, action_id)
        counts = {RelationshipType.PERFORMED.value: 0, RelationshipType.USED.value: 0}
        if key not in self._graph:
            return counts
        for _, _, rel in self._graph.in_edges(key, keys=True):
            if rel == RelationshipType.PERFORMED:
                counts[rel.value] += 1
        for _, _, rel in self._graph.out_edges(key, keys=True):
            if rel == RelationshipType.USED:
                counts[rel.value] += 1
        return counts

    async def get_stats(self) -> dict[str, Any]:
        self._open_session()
        by_label: dict[NodeLabel, int] = dict.fromkeys(NodeLabel, 0)
        successes = 0
        for label, _ in self._graph.nodes:
            by_label[label] += 1
        for key in self._action_keys():
            if self._graph.nodes[key]["data"].status == ActionStatus.SUCCESS:
                successes += 1
        total = by_label[NodeLabel.ACTION]
        return {
            "users": by_label[NodeLabel.USER],
            "backends": by_label[NodeLabel.BACKEND],
            "actions": total,
            "success_rate": round(successes / total, 2) if total > 0 else 0,
        }
