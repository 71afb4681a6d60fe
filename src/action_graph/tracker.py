"""Action tracker — the public entry point.

Records tool invocations into the action graph and answers the three
analytical queries over it. Every operation returns a JSON-serializable
dict with a ``success`` flag and either a payload key or a ``message``;
store failures never raise into the caller.

Usage:
    tracker = ActionTracker.from_config()
    await tracker.connect()
    tracker.record_action_background(user_id="u1", ...)
    result = await tracker.suggest_next_action("u1", "DynamoDB", "query", {...})
    await tracker.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from action_graph.config import TrackerConfig, get_config
from action_graph.core.action import ActionRecord, Backend, User, new_action_id
from action_graph.core.lifecycle import (
    Connecting,
    Disabled,
    Enabled,
    Pending,
    TrackerState,
    TrackerStatus,
)
from action_graph.core.payload import encode_payload
from action_graph.core.policy import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_RELATED_DEPTH,
    DEFAULT_SIMILAR_LIMIT,
    TrackingPolicy,
)
from action_graph.engine.context_recommend import recommend_actions
from action_graph.engine.sequence_suggest import suggest_next_actions
from action_graph.engine.similarity_search import find_similar_actions
from action_graph.errors import ActionGraphError, ConfigError, PayloadDecodeError
from action_graph.schemas import (
    HistoryRequest,
    RecommendationRequest,
    RecordActionRequest,
    RelatedActionsRequest,
    SimilarActionsRequest,
    SuggestNextActionRequest,
)
from action_graph.storage.base import ActionGraphStore
from action_graph.storage.factory import create_store
from action_graph.utils.timeutils import MonotonicClock, default_clock, format_timestamp

logger = logging.getLogger(__name__)

Result = dict[str, Any]
Operation = Callable[[ActionGraphStore], Awaitable[Result]]

NOT_CONNECTED_MESSAGE = "Action tracking is not connected - call connect() first"


def _disabled(what: str) -> Result:
    return {"success": False, "message": f"Action tracking is disabled - {what}"}


def _log_task_exception(task: asyncio.Task[Result]) -> None:
    """Callback to log unhandled exceptions from a background write."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background action write raised unhandled exception: %s", exc)


class ActionTracker:
    """Records actions and answers similarity, sequence and context queries.

    The tracker starts ``UNINITIALIZED`` with a store, or ``DISABLED``
    without one. ``connect()`` verifies the store and bootstraps its
    schema; any failure there disables tracking for the rest of the
    process. While disabled, every operation returns a uniform
    "tracking disabled" result without touching a store.
    """

    def __init__(
        self,
        store: ActionGraphStore | None = None,
        *,
        policy: TrackingPolicy | None = None,
        clock: MonotonicClock | None = None,
    ) -> None:
        self._state: TrackerState
        if store is None:
            logger.warning("No action store configured. Action tracking will be disabled.")
            self._state = Disabled("no store configured")
        else:
            self._state = Pending(store)
        self._policy = policy or TrackingPolicy()
        self._clock = clock or default_clock()
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task[Result]] = set()

    @classmethod
    def from_config(cls, config: TrackerConfig | None = None) -> ActionTracker:
        """Build a tracker from configuration.

        Invalid settings or missing credentials yield a disabled tracker,
        not an error.
        """
        try:
            if config is None:
                config = get_config()
            store = create_store(config.store, default_sqlite_path=config.default_sqlite_path)
        except ConfigError as e:
            logger.warning("Action tracking will be disabled: %s", e)
            tracker = cls(policy=config.policy if config is not None else None)
            tracker._state = Disabled(str(e))
            return tracker
        return cls(store, policy=config.policy)

    # ========== Lifecycle ==========

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def status(self) -> TrackerStatus:
        return self._state.status

    @property
    def enabled(self) -> bool:
        return isinstance(self._state, Enabled)

    @property
    def policy(self) -> TrackingPolicy:
        return self._policy

    async def connect(self) -> TrackerStatus:
        """Verify the store and bootstrap its schema.

        Only the first call does any work; later calls return the
        current status.
        """
        async with self._lock:
            match self._state:
                case Pending(store=store):
                    pass
                case Disabled():
                    logger.info("Action tracking is disabled - skipping connection")
                    return self._state.status
                case Connecting() | Enabled():
                    return self._state.status

            self._state = Connecting(store)
            try:
                await store.verify_connectivity()
                await store.initialize_schema()
            except ActionGraphError as e:
                logger.warning(
                    "Failed to connect to %s, action tracking disabled: %s", store.describe(), e
                )
                self._state = Disabled(str(e))
                await self._release(store)
            else:
                self._state = Enabled(store)
                logger.info("Connected action tracker to %s", store.describe())
            return self._state.status

    async def close(self) -> None:
        """Flush background writes and release the store. Safe to call twice."""
        await self.drain()
        async with self._lock:
            match self._state:
                case Disabled():
                    return
                case Pending(store=store) | Connecting(store=store) | Enabled(store=store):
                    self._state = Disabled("closed")
                    await self._release(store)

    async def _release(self, store: ActionGraphStore) -> None:
        try:
            await store.close()
        except Exception:
            logger.warning("Error closing %s", store.describe(), exc_info=True)

    async def _run(self, what: str, disabled: Result, operation: Operation) -> Result:
        match self._state:
            case Enabled(store=store):
                pass
            case Disabled():
                return disabled
            case Pending() | Connecting():
                return {"success": False, "message": NOT_CONNECTED_MESSAGE}

        try:
            payload = await operation(store)
        except ValidationError as e:
            return {"success": False, "message": f"Invalid request to {what}: {e}"}
        except ActionGraphError as e:
            logger.error("Failed to %s: %s", what, e)
            return {"success": False, "message": f"Failed to {what}: {e}"}
        except Exception as e:
            logger.exception("Unexpected error while trying to %s", what)
            return {"success": False, "message": f"Failed to {what}: {e}"}
        return {"success": True, **payload}

    # ========== Recording ==========

    async def record_action(
        self,
        user_id: str,
        user_name: str,
        backend_id: str,
        backend_type: str,
        backend_name: str,
        action_type: str,
        action_name: str,
        parameters: Any,
        result: Any,
        status: str,
    ) -> Result:
        """Append one action to the log.

        Returns:
            ``{"success": True, "actionId": ...}`` or a failure message
        """

        async def operation(store: ActionGraphStore) -> Result:
            request = RecordActionRequest(
                user_id=user_id,
                user_name=user_name,
                backend_id=backend_id,
                backend_type=backend_type,
                backend_name=backend_name,
                action_type=action_type,
                action_name=action_name,
                parameters=parameters,
                result=result,
                status=status,
            )
            timestamp = format_timestamp(self._clock.now())
            record = ActionRecord(
                id=new_action_id(),
                type=request.action_type,
                name=request.action_name,
                parameters=encode_payload(request.parameters),
                result=encode_payload(request.result),
                status=request.status,
                timestamp=timestamp,
                user=User(id=request.user_id, name=request.user_name, created_at=timestamp),
                backend=Backend(
                    id=request.backend_id,
                    type=request.backend_type,
                    name=request.backend_name,
                    created_at=timestamp,
                ),
            )
            action_id = await store.create_action(record)
            return {"actionId": action_id}

        disabled = {
            "success": True,
            "actionId": new_action_id(),
            "message": "Action tracking is disabled - action not recorded",
        }
        return await self._run("record action", disabled, operation)

    def record_action_background(self, **kwargs: Any) -> asyncio.Task[Result]:
        """Schedule ``record_action`` without waiting for it.

        The tracker holds a reference to the task until it finishes.
        Must be called from a running event loop.
        """
        task = asyncio.create_task(self.record_action(**kwargs))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_task_exception)
        return task

    async def drain(self) -> None:
        """Wait for every outstanding background write."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========== Queries ==========

    async def find_similar_actions(
        self,
        backend_type: str,
        action_type: str,
        parameters: Any,
        limit: int = DEFAULT_SIMILAR_LIMIT,
    ) -> Result:
        """Past actions of the same kind whose parameters resemble ``parameters``."""

        async def operation(store: ActionGraphStore) -> Result:
            request = SimilarActionsRequest(
                backend_type=backend_type,
                action_type=action_type,
                parameters=parameters,
                limit=limit,
            )
            matches = await find_similar_actions(
                store,
                self._policy,
                request.backend_type,
                request.action_type,
                request.parameters,
                request.limit,
            )
            return {"similarActions": [m.to_dict() for m in matches]}

        return await self._run(
            "find similar actions", _disabled("cannot find similar actions"), operation
        )

    async def suggest_next_action(
        self,
        user_id: str,
        backend_type: str,
        current_action_type: str,
        current_parameters: Any,
    ) -> Result:
        """What users typically did next after an action like this one.

        ``user_id`` identifies the caller; suggestions are mined across
        all users.
        """

        async def operation(store: ActionGraphStore) -> Result:
            request = SuggestNextActionRequest(
                user_id=user_id,
                backend_type=backend_type,
                current_action_type=current_action_type,
                current_parameters=current_parameters,
            )
            suggestions = await suggest_next_actions(
                store,
                self._policy,
                request.backend_type,
                request.current_action_type,
                request.current_parameters,
            )
            return {"suggestions": [s.to_dict() for s in suggestions]}

        return await self._run(
            "suggest next action", _disabled("cannot suggest next action"), operation
        )

    async def get_action_recommendations(self, user_id: str, context: str) -> Result:
        """Actions matching a free-text context, grouped by backend and action.

        ``user_id`` identifies the caller; results are not filtered by it.
        """

        async def operation(store: ActionGraphStore) -> Result:
            request = RecommendationRequest(user_id=user_id, context=context)
            recommendations = await recommend_actions(store, self._policy, request.context)
            return {"recommendations": [r.to_dict() for r in recommendations]}

        return await self._run(
            "get action recommendations",
            _disabled("cannot get action recommendations"),
            operation,
        )

    async def get_user_action_history(
        self,
        user_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> Result:
        """A user's most recent actions, newest first."""

        async def operation(store: ActionGraphStore) -> Result:
            request = HistoryRequest(user_id=user_id, limit=limit)
            records = await store.get_user_actions(request.user_id, request.limit)
            actions: list[Result] = []
            for record in records:
                try:
                    action = record.decode()
                except PayloadDecodeError:
                    logger.debug("Skipping undecodable action %s", record.id, exc_info=True)
                    continue
                actions.append({"action": action.to_dict(), "backend": record.backend.to_dict()})
            return {"actions": actions}

        return await self._run(
            "retrieve user action history",
            _disabled("cannot retrieve user action history"),
            operation,
        )

    async def get_related_actions(
        self,
        action_id: str,
        max_depth: int = DEFAULT_RELATED_DEPTH,
    ) -> Result:
        """Users, actions and backends within ``max_depth`` hops of an action."""

        async def operation(store: ActionGraphStore) -> Result:
            request = RelatedActionsRequest(action_id=action_id, max_depth=max_depth)
            graph = await store.get_subgraph(request.action_id, request.max_depth)
            return {"graph": graph.to_dict()}

        return await self._run(
            "retrieve related actions",
            _disabled("cannot retrieve related actions"),
            operation,
        )

    async def get_stats(self) -> Result:
        """Node counts and overall success rate."""

        async def operation(store: ActionGraphStore) -> Result:
            return {"stats": await store.get_stats()}

        return await self._run("get stats", _disabled("cannot get stats"), operation)
