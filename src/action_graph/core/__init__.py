"""Core data models for action-graph."""

from action_graph.core.action import (
    Action,
    ActionRecord,
    ActionStatus,
    Backend,
    GraphNode,
    GraphRelationship,
    GraphSlice,
    NodeLabel,
    RelationshipType,
    User,
    new_action_id,
)
from action_graph.core.lifecycle import (
    Connecting,
    Disabled,
    Enabled,
    Pending,
    TrackerState,
    TrackerStatus,
)
from action_graph.core.payload import decode_payload, encode_payload
from action_graph.core.policy import TrackingPolicy

__all__ = [
    # Graph model
    "Action",
    "ActionRecord",
    "ActionStatus",
    "Backend",
    "User",
    "NodeLabel",
    "RelationshipType",
    "GraphNode",
    "GraphRelationship",
    "GraphSlice",
    "new_action_id",
    # Payload codec
    "encode_payload",
    "decode_payload",
    # Lifecycle
    "TrackerState",
    "TrackerStatus",
    "Pending",
    "Connecting",
    "Enabled",
    "Disabled",
    # Policy
    "TrackingPolicy",
]
