"""Textual encoding of counter timestamps.

Timestamps are stored as JSON strings holding an ISO-8601 instant, e.g.
``"2024-05-01T12:00:00+00:00"`` (quotes included). Naive and aware datetimes
both round-trip unchanged.
"""

from __future__ import annotations

import json
from datetime import datetime


def encode_timestamp(value: datetime) -> str:
    """Serialize a datetime into its stored representation."""

    return json.dumps(value.isoformat())


def decode_timestamp(raw: str | bytes) -> datetime:
    """Parse a stored timestamp.

    Args:
        raw: Stored value as returned by the backing store.

    Returns:
        The decoded datetime.

    Raises:
        ValueError: If the value is not a JSON-quoted ISO-8601 instant.
    """

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    decoded = json.loads(raw)
    if not isinstance(decoded, str):
        raise ValueError(f"timestamp must be a JSON string, got {type(decoded).__name__}")
    return datetime.fromisoformat(decoded)
