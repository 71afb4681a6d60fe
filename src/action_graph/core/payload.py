"""Encode/decode boundary for opaque action payloads.

Parameters and results are whatever the calling tool passed in. They are
stored as compact JSON text and parsed back on read; no schema is imposed.
"""

from __future__ import annotations

import json
from typing import Any

from action_graph.errors import PayloadDecodeError


def encode_payload(value: Any) -> str:
    """Serialize a payload for storage.

    Key order is preserved and separators are compact, so the same input
    always yields the same text and similarity scores stay comparable.
    Values JSON cannot represent natively (datetimes, decimals) are
    stringified.
    """
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def decode_payload(text: str | None) -> Any:
    """Parse a stored payload.

    Raises:
        PayloadDecodeError: If the text is not valid JSON.
    """
    if text is None:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise PayloadDecodeError(f"Invalid stored payload: {e}") from e
