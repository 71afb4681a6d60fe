"""Sequence suggestion — what users typically do right after a similar action.

Anchors are past actions similar to the current one, mined across all
users. For each anchor, successors are actions by the anchor's user on
the anchor's backend node that start strictly after the anchor and
strictly less than the sequence window later. Successors are grouped by
``(type, name)`` and ranked by how many (anchor, successor) pairs support
them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from action_graph.core.payload import decode_payload
from action_graph.engine.similarity_search import score_candidates
from action_graph.errors import PayloadDecodeError
from action_graph.utils.timeutils import parse_timestamp

if TYPE_CHECKING:
    from action_graph.core.action import ActionRecord
    from action_graph.core.policy import TrackingPolicy
    from action_graph.storage.base import ActionGraphStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NextActionSuggestion:
    """A likely next action.

    Attributes:
        action_type: Suggested action type
        action_name: Suggested action name
        possible_parameters: Distinct parameter sets seen for this successor
        frequency: Number of (anchor, successor) pairs observed
    """

    action_type: str
    action_name: str
    possible_parameters: tuple[Any, ...]
    frequency: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "actionType": self.action_type,
            "actionName": self.action_name,
            "possibleParameters": list(self.possible_parameters),
            "frequency": self.frequency,
        }


@dataclass
class _Group:
    action_type: str
    action_name: str
    frequency: int = 0
    raw_parameters: dict[str, Any] = field(default_factory=dict)


def within_window(anchor_timestamp: str, successor_timestamp: str, window: timedelta) -> bool:
    """Whether a successor starts strictly after the anchor and strictly inside the window."""
    gap = parse_timestamp(successor_timestamp) - parse_timestamp(anchor_timestamp)
    return timedelta(0) < gap < window


def group_followups(
    pairs: list[tuple[ActionRecord, ActionRecord]],
    window: timedelta,
) -> list[NextActionSuggestion]:
    """Group (anchor, successor) pairs by successor ``(type, name)``.

    Pairs outside the window are dropped. Groups are ordered by frequency
    descending; equal frequencies keep first-seen order.
    """
    groups: dict[tuple[str, str], _Group] = {}
    for anchor, successor in pairs:
        if not within_window(anchor.timestamp, successor.timestamp, window):
            continue
        key = (successor.type, successor.name)
        group = groups.get(key)
        if group is None:
            group = groups[key] = _Group(successor.type, successor.name)
        group.frequency += 1
        if successor.parameters in group.raw_parameters:
            continue
        try:
            group.raw_parameters[successor.parameters] = decode_payload(successor.parameters)
        except PayloadDecodeError:
            logger.debug(
                "Skipping undecodable parameters of action %s", successor.id, exc_info=True
            )

    ranked = sorted(groups.values(), key=lambda g: g.frequency, reverse=True)
    return [
        NextActionSuggestion(
            action_type=g.action_type,
            action_name=g.action_name,
            possible_parameters=tuple(g.raw_parameters.values()),
            frequency=g.frequency,
        )
        for g in ranked
    ]


async def suggest_next_actions(
    store: ActionGraphStore,
    policy: TrackingPolicy,
    backend_type: str,
    current_action_type: str,
    current_parameters: Any,
) -> list[NextActionSuggestion]:
    """Suggest what usually follows an action like the current one.

    Args:
        store: Action graph store
        policy: Tracking policy (threshold, window, cap)
        backend_type: Backend category of the current action
        current_action_type: Type of the current action
        current_parameters: Parameters of the current action

    Returns:
        At most ``policy.max_suggestions`` suggestions, most frequent first
    """
    candidates = await store.find_candidate_actions(backend_type, current_action_type)
    anchors = score_candidates(candidates, current_parameters, policy.similarity_threshold)
    if not anchors:
        return []

    by_id = {anchor.record.id: anchor.record for anchor in anchors}
    followups = await store.find_followup_actions(list(by_id), policy.sequence_window)

    pairs = [
        (by_id[anchor_id], successor)
        for anchor_id, successor in followups
        if anchor_id in by_id
    ]
    suggestions = group_followups(pairs, policy.sequence_window)
    return suggestions[: policy.max_suggestions]
