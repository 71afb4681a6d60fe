"""Shared CLI helpers for configuration, tracker lifecycle, and input parsing."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import typer

from action_graph.config import TrackerConfig
from action_graph.errors import ConfigError
from action_graph.tracker import ActionTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_config() -> TrackerConfig:
    """Load configuration fresh for each command."""
    try:
        return TrackerConfig.load()
    except ConfigError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, yielding once before loop teardown.

    The extra yield lets aiosqlite worker threads deliver their last
    callbacks before ``asyncio.run()`` closes the loop.
    """

    async def _with_cleanup() -> T:
        try:
            return await coro
        finally:
            await asyncio.sleep(0)

    return asyncio.run(_with_cleanup())


@asynccontextmanager
async def connected_tracker(config: TrackerConfig) -> AsyncIterator[ActionTracker]:
    """A connected tracker that is closed when the command finishes."""
    tracker = ActionTracker.from_config(config)
    await tracker.connect()
    try:
        yield tracker
    finally:
        await tracker.close()


def parse_json(value: str | None, option: str) -> Any:
    """Parse a JSON command-line value; ``None`` stays ``None``."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        typer.secho(f"Error: {option} is not valid JSON: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from e
