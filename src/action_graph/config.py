"""Configuration for action-graph.

Sources, highest priority first:

1. Environment variables (``ACTIONGRAPH_*`` and ``NEO4J_*``)
2. ``~/.actiongraph/config.toml`` (directory overridable via ``ACTIONGRAPH_DIR``)
3. Built-in defaults

No credentials have defaults. A Neo4j store with any of URI, username or
password missing leaves the tracker disabled.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from action_graph.core.policy import TrackingPolicy
from action_graph.errors import ConfigError

logger = logging.getLogger(__name__)


class StoreKind(StrEnum):
    """Which store backs the tracker."""

    NEO4J = "neo4j"
    SQLITE = "sqlite"
    MEMORY = "memory"


def get_actiongraph_dir(env: Mapping[str, str] | None = None) -> Path:
    """Get the action-graph data directory.

    Priority:
    1. ACTIONGRAPH_DIR environment variable
    2. ~/.actiongraph/
    """
    if env is None:
        env = os.environ
    env_dir = env.get("ACTIONGRAPH_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".actiongraph"


@dataclass(frozen=True)
class StoreSettings:
    """Where the action log lives."""

    kind: StoreKind = StoreKind.NEO4J
    sqlite_path: Path | None = None
    neo4j_uri: str | None = None
    neo4j_username: str | None = None
    neo4j_password: str | None = None
    neo4j_database: str | None = None

    @property
    def has_neo4j_credentials(self) -> bool:
        return bool(self.neo4j_uri and self.neo4j_username and self.neo4j_password)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary. The password is never included."""
        return {
            "kind": self.kind.value,
            "sqlite_path": str(self.sqlite_path) if self.sqlite_path else None,
            "neo4j_uri": self.neo4j_uri,
            "neo4j_username": self.neo4j_username,
            "neo4j_database": self.neo4j_database,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StoreSettings:
        raw_kind = str(data.get("kind", StoreKind.NEO4J.value)).lower()
        try:
            kind = StoreKind(raw_kind)
        except ValueError:
            raise ConfigError(
                f"Unknown store kind {raw_kind!r}; expected one of "
                + ", ".join(k.value for k in StoreKind)
            ) from None

        sqlite_path = data.get("sqlite_path")
        return cls(
            kind=kind,
            sqlite_path=Path(sqlite_path).expanduser() if sqlite_path else None,
            neo4j_uri=data.get("neo4j_uri") or None,
            neo4j_username=data.get("neo4j_username") or None,
            neo4j_password=data.get("neo4j_password") or None,
            neo4j_database=data.get("neo4j_database") or None,
        )


# Environment variable -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "ACTIONGRAPH_STORE": ("store", "kind"),
    "ACTIONGRAPH_SQLITE_PATH": ("store", "sqlite_path"),
    "NEO4J_URI": ("store", "neo4j_uri"),
    "NEO4J_USERNAME": ("store", "neo4j_username"),
    "NEO4J_PASSWORD": ("store", "neo4j_password"),
    "NEO4J_DATABASE": ("store", "neo4j_database"),
    "ACTIONGRAPH_SIMILARITY_THRESHOLD": ("policy", "similarity_threshold"),
    "ACTIONGRAPH_WINDOW_MINUTES": ("policy", "window_minutes"),
}


@dataclass(frozen=True)
class TrackerConfig:
    """Complete tracker configuration."""

    data_dir: Path = field(default_factory=get_actiongraph_dir)
    store: StoreSettings = field(default_factory=StoreSettings)
    policy: TrackingPolicy = field(default_factory=TrackingPolicy)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.toml"

    @property
    def default_sqlite_path(self) -> Path:
        return self.data_dir / "actions.db"

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_dir": str(self.data_dir),
            "store": self.store.to_dict(),
            "policy": self.policy.to_dict(),
        }

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> TrackerConfig:
        """Load configuration from file and environment.

        A missing file is not an error; defaults apply.

        Raises:
            ConfigError: If the file is malformed or a value is invalid
        """
        if env is None:
            env = os.environ
        if config_path is None:
            data_dir = get_actiongraph_dir(env)
            config_path = data_dir / "config.toml"
        else:
            data_dir = config_path.parent

        data: dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(f"Cannot read {config_path}: {e}") from e
            logger.debug("Loaded configuration from %s", config_path)

        sections: dict[str, dict[str, Any]] = {
            "store": dict(data.get("store", {})),
            "policy": dict(data.get("policy", {})),
        }
        for var, (section, key) in _ENV_OVERRIDES.items():
            value = env.get(var)
            if value:
                sections[section][key] = value

        try:
            policy = TrackingPolicy.from_dict(sections["policy"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid policy setting: {e}") from e

        return cls(
            data_dir=data_dir,
            store=StoreSettings.from_dict(sections["store"]),
            policy=policy,
        )


# Singleton instance for easy access
_config: TrackerConfig | None = None


def get_config(reload: bool = False) -> TrackerConfig:
    """Get the tracker configuration (singleton).

    Args:
        reload: Force reload from disk and environment

    Returns:
        TrackerConfig instance
    """
    global _config
    if _config is None or reload:
        _config = TrackerConfig.load()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
