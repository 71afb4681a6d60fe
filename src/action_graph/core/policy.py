"""Fixed business rules for similarity, windowing, and result caps.

The defaults are the production policy. They are exposed as a frozen
dataclass so callers and tests can read them by name, and so a config
file can override them deliberately.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

# Minimum Jaro–Winkler score (exclusive) for two payloads to count as similar
SIMILARITY_THRESHOLD = 0.7

# Successor actions must start strictly within this window after the anchor
SEQUENCE_WINDOW = timedelta(minutes=30)

# Result caps
MAX_SUGGESTIONS = 3
MAX_RECOMMENDATIONS = 5

# Defaults for caller-tunable limits
DEFAULT_SIMILAR_LIMIT = 5
DEFAULT_HISTORY_LIMIT = 20
DEFAULT_RELATED_DEPTH = 2


@dataclass(frozen=True)
class TrackingPolicy:
    """Policy constants used by the query engines."""

    similarity_threshold: float = SIMILARITY_THRESHOLD
    sequence_window: timedelta = SEQUENCE_WINDOW
    max_suggestions: int = MAX_SUGGESTIONS
    max_recommendations: int = MAX_RECOMMENDATIONS

    def __post_init__(self) -> None:
        if not 0.0 <= self.similarity_threshold < 1.0:
            raise ValueError("similarity_threshold must be in [0, 1)")
        if self.sequence_window <= timedelta(0):
            raise ValueError("sequence_window must be positive")
        if self.max_suggestions < 1 or self.max_recommendations < 1:
            raise ValueError("result caps must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        return {
            "similarity_threshold": self.similarity_threshold,
            "window_minutes": self.sequence_window.total_seconds() / 60,
            "max_suggestions": self.max_suggestions,
            "max_recommendations": self.max_recommendations,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrackingPolicy:
        return cls(
            similarity_threshold=float(data.get("similarity_threshold", SIMILARITY_THRESHOLD)),
            sequence_window=timedelta(
                minutes=float(
                    data.get("window_minutes", SEQUENCE_WINDOW.total_seconds() / 60)
                )
            ),
            max_suggestions=int(data.get("max_suggestions", MAX_SUGGESTIONS)),
            max_recommendations=int(data.get("max_recommendations", MAX_RECOMMENDATIONS)),
        )
