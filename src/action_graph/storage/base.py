"""Abstract base class for action graph storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from action_graph.core.action import ActionRecord, Backend, GraphSlice, User


class ActionGraphStore(ABC):
    """
    Abstract interface for the action log store.

    Implementations own the physical layout. Each public method runs in
    its own logical session, opened on entry and closed on exit, so
    concurrent callers never share one.

    Implementations raise ``action_graph.errors`` exceptions, never
    driver-specific ones.
    """

    name: str = "store"

    def describe(self) -> str:
        """Human-readable target description for logs (no secrets)."""
        return self.name

    # ========== Lifecycle ==========

    @abstractmethod
    async def verify_connectivity(self) -> None:
        """
        Check that the store can be reached.

        Raises:
            StoreUnavailableError: If the store is unreachable
        """
        ...

    @abstractmethod
    async def initialize_schema(self) -> None:
        """
        Ensure uniqueness constraints and lookup indexes exist.

        Idempotent and safe to call concurrently: existing constraints
        and indexes are left alone.

        Raises:
            SchemaError: If the schema cannot be applied
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection. Safe to call twice."""
        ...

    # ========== Writes ==========

    @abstractmethod
    async def create_action(self, record: ActionRecord) -> str:
        """
        Append one action to the log.

        Upserts ``record.user`` and ``record.backend`` (attributes are only
        set when the node is created), creates the action node, and links
        it with PERFORMED and USED edges. All of it happens in one atomic
        write.

        Args:
            record: The action with its performer and backend

        Returns:
            The action ID

        Raises:
            StoreQueryError: If the write fails (nothing is written)
        """
        ...

    # ========== Reads ==========

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        """Get a user by ID."""
        ...

    @abstractmethod
    async def get_backend(self, backend_id: str) -> Backend | None:
        """Get a backend by ID."""
        ...

    @abstractmethod
    async def get_action(self, action_id: str) -> ActionRecord | None:
        """Get an action joined to its performer and backend."""
        ...

    @abstractmethod
    async def find_candidate_actions(
        self,
        backend_type: str,
        action_type: str,
    ) -> list[ActionRecord]:
        """
        Get all actions of a type performed against backends of a type.

        Args:
            backend_type: Backend category to match exactly
            action_type: Action category to match exactly

        Returns:
            Matching actions in any order
        """
        ...

    @abstractmethod
    async def find_followup_actions(
        self,
        anchor_ids: Sequence[str],
        window: timedelta,
    ) -> list[tuple[str, ActionRecord]]:
        """
        Get what the same user did next on the same backend.

        For each anchor action, returns every action performed by the
        anchor's user against the anchor's backend node with a later
        timestamp. Stores may pre-filter by ``window``; callers apply the
        exact window boundary themselves.

        Args:
            anchor_ids: IDs of the anchor actions
            window: Time window after each anchor

        Returns:
            List of (anchor_id, follow-up action) pairs
        """
        ...

    @abstractmethod
    async def search_actions(self, terms: Sequence[str]) -> list[ActionRecord]:
        """
        Full-text search over action name, type and serialized parameters.

        An action matches if any term matches.

        Args:
            terms: Lowercased search terms

        Returns:
            Matching actions, best match first
        """
        ...

    @abstractmethod
    async def get_user_actions(self, user_id: str, limit: int) -> list[ActionRecord]:
        """Get actions performed by a user, newest first."""
        ...

    @abstractmethod
    async def get_subgraph(self, action_id: str, max_depth: int) -> GraphSlice:
        """
        Get everything reachable from an action within ``max_depth`` hops.

        Edges are followed in both directions.
        Returns an empty slice if the action does not exist.
        """
        ...

    @abstractmethod
    async def count_relationships(self, action_id: str) -> dict[str, int]:
        """Count PERFORMED and USED edges attached to an action."""
        ...

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Node counts and overall success rate."""
        ...
