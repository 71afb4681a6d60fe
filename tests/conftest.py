"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from action_graph.config import reset_config
from action_graph.core.action import ActionRecord, ActionStatus, Backend, User
from action_graph.core.payload import encode_payload
from action_graph.storage.memory_store import InMemoryActionStore
from action_graph.storage.sqlite_store import SQLiteActionStore
from action_graph.tracker import ActionTracker
from action_graph.utils.timeutils import MonotonicClock, format_timestamp

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class ManualTime:
    """A wall clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def make_record(
    action_id: str,
    *,
    at: datetime = T0,
    user_id: str = "u1",
    backend_id: str = "ddb-1",
    backend_type: str = "DynamoDB",
    backend_name: str = "Orders DB",
    action_type: str = "query",
    action_name: str = "query_table",
    parameters: Any = None,
    result: Any = None,
    status: ActionStatus = ActionStatus.SUCCESS,
    raw_parameters: str | None = None,
) -> ActionRecord:
    """Build a stored-form action record for store-level tests."""
    timestamp = format_timestamp(at)
    return ActionRecord(
        id=action_id,
        type=action_type,
        name=action_name,
        parameters=raw_parameters
        if raw_parameters is not None
        else encode_payload(parameters if parameters is not None else {"table": "orders"}),
        result=encode_payload(result),
        status=status,
        timestamp=timestamp,
        user=User(id=user_id, name=user_id.upper(), created_at=timestamp),
        backend=Backend(
            id=backend_id, type=backend_type, name=backend_name, created_at=timestamp
        ),
    )


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep tests away from the real ~/.actiongraph and ambient credentials."""
    for var in (
        "ACTIONGRAPH_STORE",
        "ACTIONGRAPH_SQLITE_PATH",
        "ACTIONGRAPH_SIMILARITY_THRESHOLD",
        "ACTIONGRAPH_WINDOW_MINUTES",
        "NEO4J_URI",
        "NEO4J_USERNAME",
        "NEO4J_PASSWORD",
        "NEO4J_DATABASE",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("ACTIONGRAPH_DIR", str(tmp_path / "actiongraph-home"))
    reset_config()
    yield
    reset_config()


@pytest.fixture
def manual_time() -> ManualTime:
    return ManualTime()


@pytest.fixture
def memory_store() -> InMemoryActionStore:
    return InMemoryActionStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteActionStore, None]:
    """A schema-initialized SQLite store in a temp directory."""
    store = SQLiteActionStore(tmp_path / "actions.db")
    await store.verify_connectivity()
    await store.initialize_schema()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def tracker(
    memory_store: InMemoryActionStore,
    manual_time: ManualTime,
) -> AsyncGenerator[ActionTracker, None]:
    """A connected tracker over an in-memory store with a controllable clock."""
    tracker = ActionTracker(memory_store, clock=MonotonicClock(manual_time))
    await tracker.connect()
    yield tracker
    await tracker.close()


@pytest.fixture
def record_factory() -> Any:
    """The ``make_record`` builder, for tests that need stored-form records."""
    return make_record
