"""Tracker lifecycle states.

    Pending ──connect()──> Connecting ──ok──> Enabled
       │                        │
       └──(no store)──> Disabled <──failure──┘

``Disabled`` is terminal for the life of the process: once tracking is off,
every operation short-circuits without touching a store.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from action_graph.storage.base import ActionGraphStore


class TrackerStatus(StrEnum):
    """Externally visible lifecycle status."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass(frozen=True)
class Pending:
    """A store is configured but connect() has not run yet."""

    store: ActionGraphStore

    @property
    def status(self) -> TrackerStatus:
        return TrackerStatus.UNINITIALIZED


@dataclass(frozen=True)
class Connecting:
    """connect() is verifying the store and bootstrapping the schema."""

    store: ActionGraphStore

    @property
    def status(self) -> TrackerStatus:
        return TrackerStatus.CONNECTING


@dataclass(frozen=True)
class Enabled:
    """The store is reachable and the schema is in place."""

    store: ActionGraphStore

    @property
    def status(self) -> TrackerStatus:
        return TrackerStatus.ENABLED


@dataclass(frozen=True)
class Disabled:
    """Tracking is off for the rest of the process."""

    reason: str

    @property
    def status(self) -> TrackerStatus:
        return TrackerStatus.DISABLED


TrackerState = Pending | Connecting | Enabled | Disabled
