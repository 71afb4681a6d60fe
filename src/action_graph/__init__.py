"""action-graph - Graph-structured action log with similarity and sequence recommendations."""

from action_graph.core.action import Action, ActionRecord, ActionStatus, Backend, User
from action_graph.core.lifecycle import TrackerStatus
from action_graph.core.policy import TrackingPolicy
from action_graph.errors import ActionGraphError
from action_graph.storage import (
    ActionGraphStore,
    InMemoryActionStore,
    Neo4jActionStore,
    SQLiteActionStore,
    create_store,
)
from action_graph.tracker import ActionTracker

__version__ = "0.1.0"

__all__ = [
    # Tracker
    "ActionTracker",
    "TrackerStatus",
    "TrackingPolicy",
    # Data model
    "Action",
    "ActionRecord",
    "ActionStatus",
    "Backend",
    "User",
    # Storage
    "ActionGraphStore",
    "InMemoryActionStore",
    "SQLiteActionStore",
    "Neo4jActionStore",
    "create_store",
    # Errors
    "ActionGraphError",
    # Version
    "__version__",
]
