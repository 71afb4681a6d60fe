"""Exception hierarchy for action-graph.

Stores and codecs raise these; the tracker catches them at its boundary
and turns them into ``{"success": False, "message": ...}`` results.
"""

from __future__ import annotations


class ActionGraphError(Exception):
    """Base class for all action-graph errors."""


class ConfigError(ActionGraphError):
    """Store configuration is missing or invalid."""


class StoreUnavailableError(ActionGraphError):
    """The backing store cannot be reached."""


class SchemaError(ActionGraphError):
    """Constraints or indexes could not be applied."""


class StoreQueryError(ActionGraphError):
    """A read or write failed inside the store."""


class PayloadDecodeError(ActionGraphError):
    """A stored payload is not valid serialized JSON."""
