"""Action graph data structures — users, backends, and the actions linking them.

The log is a small property graph:

    (User) -[:PERFORMED]-> (Action) -[:USED]-> (Backend)

Every action has exactly one performer and one target backend, both created
in the same write as the action itself. Nothing is ever updated or deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from uuid import uuid4

from action_graph.core.payload import decode_payload


class ActionStatus(StrEnum):
    """Outcome of the tracked tool invocation."""

    SUCCESS = "success"
    FAILURE = "failure"


class NodeLabel(StrEnum):
    """Node labels in the action graph."""

    USER = "User"
    ACTION = "Action"
    BACKEND = "Backend"


class RelationshipType(StrEnum):
    """Edge types in the action graph."""

    PERFORMED = "PERFORMED"
    """User -> Action"""

    USED = "USED"
    """Action -> Backend"""


def new_action_id() -> str:
    """Generate a globally unique action ID."""
    return str(uuid4())


@dataclass(frozen=True)
class User:
    """The person or agent that invoked a tool.

    Attributes:
        id: External identifier, stable across sessions
        name: Display name captured on first sight
        created_at: First-seen timestamp (ISO-8601)
    """

    id: str
    name: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "createdAt": self.created_at}


@dataclass(frozen=True)
class Backend:
    """An external system actions are performed against.

    Attributes:
        id: Stable identifier of the instance (e.g. one DynamoDB account/region)
        type: Category string (e.g. "DynamoDB")
        name: Display name
        created_at: First-seen timestamp (ISO-8601)
    """

    id: str
    type: str
    name: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class Action:
    """An action with its payloads restored to structured form."""

    id: str
    type: str
    name: str
    parameters: Any
    result: Any
    status: ActionStatus
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "parameters": self.parameters,
            "result": self.result,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ActionRecord:
    """An action as stored, joined to its performer and target backend.

    Payloads stay serialized here; call ``decode()`` to get an ``Action``.

    Attributes:
        id: Unique action ID
        type: Coarse category (e.g. "data_operation")
        name: Specific operation (e.g. "query_table")
        parameters: Serialized parameters payload
        result: Serialized result payload
        status: Outcome of the invocation
        timestamp: Recorder-assigned write time (ISO-8601 UTC)
        user: The performing user
        backend: The backend the action targeted
    """

    id: str
    type: str
    name: str
    parameters: str
    result: str
    status: ActionStatus
    timestamp: str
    user: User
    backend: Backend

    def properties(self) -> dict[str, Any]:
        """Node properties as stored, payloads still serialized."""
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "parameters": self.parameters,
            "result": self.result,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }

    def decode(self) -> Action:
        """Restore structured payloads.

        Raises:
            PayloadDecodeError: If either stored payload is malformed.
        """
        return Action(
            id=self.id,
            type=self.type,
            name=self.name,
            parameters=decode_payload(self.parameters),
            result=decode_payload(self.result),
            status=self.status,
            timestamp=self.timestamp,
        )


@dataclass(frozen=True)
class GraphNode:
    """A node in a subgraph export."""

    label: NodeLabel
    id: str
    properties: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label.value, "id": self.id, "properties": dict(self.properties)}


@dataclass(frozen=True)
class GraphRelationship:
    """An edge in a subgraph export."""

    type: RelationshipType
    start_id: str
    end_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "start": self.start_id, "end": self.end_id}


@dataclass(frozen=True)
class GraphSlice:
    """Nodes and relationships reachable from a starting action."""

    nodes: tuple[GraphNode, ...] = ()
    relationships: tuple[GraphRelationship, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "relationships": [rel.to_dict() for rel in self.relationships],
        }
