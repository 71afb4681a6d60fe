"""Query engines over the action graph."""

from action_graph.engine.context_recommend import (
    ActionRecommendation,
    aggregate_matches,
    recommend_actions,
)
from action_graph.engine.sequence_suggest import (
    NextActionSuggestion,
    group_followups,
    suggest_next_actions,
    within_window,
)
from action_graph.engine.similarity_search import (
    SimilarAction,
    find_similar_actions,
    parameter_similarity,
    score_candidates,
)

__all__ = [
    "ActionRecommendation",
    "NextActionSuggestion",
    "SimilarAction",
    "aggregate_matches",
    "find_similar_actions",
    "parameter_similarity",
    "group_followups",
    "recommend_actions",
    "score_candidates",
    "suggest_next_actions",
    "within_window",
]
