"""Pydantic models for tracker requests."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from action_graph.core.action import ActionStatus
from action_graph.core.policy import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_RELATED_DEPTH,
    DEFAULT_SIMILAR_LIMIT,
)

# ============ Request Models ============


class RecordActionRequest(BaseModel):
    """Request to record one tool invocation."""

    user_id: str = Field(..., min_length=1, description="External user identifier")
    user_name: str = Field(..., description="User display name (kept from first sighting)")
    backend_id: str = Field(..., min_length=1, description="Backend instance identifier")
    backend_type: str = Field(..., min_length=1, description="Backend category, e.g. DynamoDB")
    backend_name: str = Field(..., description="Backend display name")
    action_type: str = Field(..., min_length=1, description="Coarse action category")
    action_name: str = Field(..., min_length=1, description="Specific operation")
    parameters: Any = Field(None, description="Tool input, stored as serialized JSON")
    result: Any = Field(None, description="Tool output, stored as serialized JSON")
    status: ActionStatus = Field(..., description="Outcome of the invocation")


class SimilarActionsRequest(BaseModel):
    """Request to find actions with similar parameters."""

    backend_type: str = Field(..., min_length=1)
    action_type: str = Field(..., min_length=1)
    parameters: Any = Field(None, description="Probe payload")
    limit: int = Field(DEFAULT_SIMILAR_LIMIT, ge=1, le=1000)


class SuggestNextActionRequest(BaseModel):
    """Request to suggest likely next actions."""

    user_id: str = Field(..., description="Calling user (not used to filter results)")
    backend_type: str = Field(..., min_length=1)
    current_action_type: str = Field(..., min_length=1)
    current_parameters: Any = Field(None)


class RecommendationRequest(BaseModel):
    """Request to recommend actions for a free-text context."""

    user_id: str = Field(..., description="Calling user (not used to filter results)")
    context: str = Field(..., max_length=10_000, description="Free-text context")


class HistoryRequest(BaseModel):
    """Request for a user's recent actions."""

    user_id: str = Field(..., min_length=1)
    limit: int = Field(DEFAULT_HISTORY_LIMIT, ge=1, le=1000)


class RelatedActionsRequest(BaseModel):
    """Request for the neighborhood of an action."""

    action_id: str = Field(..., min_length=1)
    max_depth: int = Field(DEFAULT_RELATED_DEPTH, ge=1, le=5)
