"""Similarity search — past actions whose parameters resemble a given payload.

Candidates are every action of the same type performed against a backend
of the same type. Each candidate's serialized parameters are scored
against the probe payload with Jaro–Winkler; only scores strictly above
the policy threshold survive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from rapidfuzz.distance import JaroWinkler

from action_graph.core.payload import encode_payload
from action_graph.errors import PayloadDecodeError

if TYPE_CHECKING:
    from action_graph.core.action import Action, ActionRecord, Backend
    from action_graph.core.policy import TrackingPolicy
    from action_graph.storage.base import ActionGraphStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarAction:
    """A past action scored against the probe payload.

    Attributes:
        action: The action with decoded payloads
        backend: The backend it was performed against
        similarity: Jaro–Winkler score of the serialized parameters
        record: The stored record the action was decoded from
    """

    action: Action
    backend: Backend
    similarity: float
    record: ActionRecord

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.to_dict(),
            "backend": self.backend.to_dict(),
            "similarity": self.similarity,
        }


def parameter_similarity(stored: str, probe: str) -> float:
    """Jaro–Winkler similarity of two serialized payloads, in [0, 1]."""
    return float(JaroWinkler.normalized_similarity(stored, probe))


def score_candidates(
    candidates: list[ActionRecord],
    parameters: Any,
    threshold: float,
) -> list[SimilarAction]:
    """Score candidates and keep those strictly above ``threshold``.

    Records whose stored payloads cannot be decoded are skipped.

    Returns:
        Matches sorted by similarity, then timestamp, both descending
    """
    probe = encode_payload(parameters)
    matches: list[SimilarAction] = []
    for record in candidates:
        similarity = parameter_similarity(record.parameters, probe)
        if similarity <= threshold:
            continue
        try:
            action = record.decode()
        except PayloadDecodeError:
            logger.debug("Skipping action %s with undecodable payload", record.id, exc_info=True)
            continue
        matches.append(
            SimilarAction(
                action=action,
                backend=record.backend,
                similarity=similarity,
                record=record,
            )
        )

    matches.sort(key=lambda m: (m.similarity, m.record.timestamp), reverse=True)
    return matches


async def find_similar_actions(
    store: ActionGraphStore,
    policy: TrackingPolicy,
    backend_type: str,
    action_type: str,
    parameters: Any,
    limit: int,
) -> list[SimilarAction]:
    """Find past actions with parameters similar to ``parameters``.

    Args:
        store: Action graph store
        policy: Tracking policy (similarity threshold)
        backend_type: Backend category to match exactly
        action_type: Action category to match exactly
        parameters: Probe payload, serialized the same way as stored ones
        limit: Maximum number of results

    Returns:
        At most ``limit`` matches, most similar first
    """
    candidates = await store.find_candidate_actions(backend_type, action_type)
    matches = score_candidates(candidates, parameters, policy.similarity_threshold)
    return matches[:limit]
