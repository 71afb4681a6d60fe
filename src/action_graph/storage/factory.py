"""Storage factory for creating a store based on configuration."""

from __future__ import annotations

import logging
from pathlib import Path

from action_graph.config import StoreKind, StoreSettings
from action_graph.errors import ConfigError
from action_graph.storage.base import ActionGraphStore
from action_graph.storage.memory_store import InMemoryActionStore
from action_graph.storage.neo4j_store import Neo4jActionStore
from action_graph.storage.sqlite_store import SQLiteActionStore

logger = logging.getLogger(__name__)


def create_store(
    settings: StoreSettings,
    *,
    default_sqlite_path: Path | None = None,
) -> ActionGraphStore:
    """
    Create a store instance based on configuration.

    Nothing is connected here; the tracker verifies connectivity and
    applies the schema during ``connect()``.

    Args:
        settings: Store settings
        default_sqlite_path: Database file used when SQLite is selected
            without an explicit path

    Returns:
        An unconnected store

    Raises:
        ConfigError: If the selected store is missing required settings

    Examples:
        # Neo4j (credentials required)
        store = create_store(StoreSettings(
            kind=StoreKind.NEO4J,
            neo4j_uri="neo4j://localhost:7687",
            neo4j_username="neo4j",
            neo4j_password="secret",
        ))

        # Local SQLite file
        store = create_store(StoreSettings(kind=StoreKind.SQLITE, sqlite_path=Path("a.db")))
    """
    if settings.kind == StoreKind.NEO4J:
        if not settings.has_neo4j_credentials:
            raise ConfigError("Neo4j credentials not configured (NEO4J_URI/USERNAME/PASSWORD)")
        return Neo4jActionStore(
            str(settings.neo4j_uri),
            str(settings.neo4j_username),
            str(settings.neo4j_password),
            database=settings.neo4j_database,
        )

    elif settings.kind == StoreKind.SQLITE:
        path = settings.sqlite_path or default_sqlite_path
        if path is None:
            raise ConfigError("SQLite store selected but no database path configured")
        return SQLiteActionStore(path)

    elif settings.kind == StoreKind.MEMORY:
        logger.info("Using in-memory action store; actions are lost on exit")
        return InMemoryActionStore()

    raise ConfigError(f"Unknown store kind: {settings.kind}")
