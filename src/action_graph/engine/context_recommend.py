"""Context recommendation — which backend actions match a free-text context."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from action_graph.core.payload import decode_payload
from action_graph.errors import PayloadDecodeError
from action_graph.utils.search_terms import extract_terms

if TYPE_CHECKING:
    from action_graph.core.action import ActionRecord
    from action_graph.core.policy import TrackingPolicy
    from action_graph.storage.base import ActionGraphStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionRecommendation:
    """A backend action that matched the context.

    Attributes:
        backend_type: Backend category
        backend_name: Backend display name
        action_type: Action type
        action_name: Action name
        parameter_samples: Distinct parameter sets among the matches
        frequency: Number of matching actions in this group
    """

    backend_type: str
    backend_name: str
    action_type: str
    action_name: str
    parameter_samples: tuple[Any, ...]
    frequency: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "backendType": self.backend_type,
            "backendName": self.backend_name,
            "actionType": self.action_type,
            "actionName": self.action_name,
            "parameterSamples": list(self.parameter_samples),
            "frequency": self.frequency,
        }


@dataclass
class _Group:
    key: tuple[str, str, str, str]
    frequency: int = 0
    samples: dict[str, Any] = field(default_factory=dict)


def aggregate_matches(matches: list[ActionRecord]) -> list[ActionRecommendation]:
    """Group matches by backend and action, most frequent first.

    Equal frequencies keep the order of their best-ranked match.
    """
    groups: dict[tuple[str, str, str, str], _Group] = {}
    for record in matches:
        key = (record.backend.type, record.backend.name, record.type, record.name)
        group = groups.get(key)
        if group is None:
            group = groups[key] = _Group(key)
        group.frequency += 1
        if record.parameters in group.samples:
            continue
        try:
            group.samples[record.parameters] = decode_payload(record.parameters)
        except PayloadDecodeError:
            logger.debug("Skipping undecodable parameters of action %s", record.id, exc_info=True)

    ranked = sorted(groups.values(), key=lambda g: g.frequency, reverse=True)
    return [
        ActionRecommendation(
            backend_type=g.key[0],
            backend_name=g.key[1],
            action_type=g.key[2],
            action_name=g.key[3],
            parameter_samples=tuple(g.samples.values()),
            frequency=g.frequency,
        )
        for g in ranked
    ]


async def recommend_actions(
    store: ActionGraphStore,
    policy: TrackingPolicy,
    context: str,
) -> list[ActionRecommendation]:
    """Recommend actions whose name, type or parameters match ``context``.

    An empty or punctuation-only context returns no recommendations
    without querying the store.

    Returns:
        At most ``policy.max_recommendations`` groups
    """
    terms = extract_terms(context)
    if not terms:
        return []
    matches = await store.search_actions(terms)
    return aggregate_matches(matches)[: policy.max_recommendations]
