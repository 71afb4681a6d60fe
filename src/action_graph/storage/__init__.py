"""Storage backends for the action graph."""

from action_graph.storage.base import ActionGraphStore
from action_graph.storage.factory import create_store
from action_graph.storage.memory_store import InMemoryActionStore
from action_graph.storage.neo4j_store import Neo4jActionStore
from action_graph.storage.sqlite_store import SQLiteActionStore

__all__ = [
    "ActionGraphStore",
    "InMemoryActionStore",
    "Neo4jActionStore",
    "SQLiteActionStore",
    "create_store",
]
