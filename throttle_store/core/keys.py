"""Physical key derivation for throttle counters.

Every counter lives under ``<prefix>|throttle:<id>`` in the backing store.
Prefixes may not contain ``|``, so the first ``|`` in a physical key always
ends the prefix and two different ``(prefix, id)`` pairs can never produce the
same key. Identifiers are opaque and are not escaped.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any

PREFIX_TERMINATOR = "|"
KEY_SEPARATOR = f"{PREFIX_TERMINATOR}throttle:"


def make_key(prefix: str, throttle_id: Any) -> str:
    """Combine a store prefix and a throttle identifier into a physical key.

    Args:
        prefix: Namespace prefix fixed for one store instance.
        throttle_id: Caller-supplied identifier (IP, API key, route, ...).

    Returns:
        The key name in the backing store.

    Examples:
        >>> make_key("api", "ip:10.0.0.1")
        'api|throttle:ip:10.0.0.1'
    """

    return f"{prefix}{KEY_SEPARATOR}{throttle_id}"


@dataclass(frozen=True)
class KeyNamespacer:
    """Derives physical keys for a single, immutable prefix.

    Raises:
        ValueError: If the prefix contains the prefix terminator.
    """

    prefix: str

    def __post_init__(self) -> None:
        if PREFIX_TERMINATOR in self.prefix:
            raise ValueError(f"key prefix must not contain {PREFIX_TERMINATOR!r}")

    def key(self, throttle_id: Any) -> str:
        return make_key(self.prefix, throttle_id)


def hash_key_for_logging(key: str) -> str:
    """Hash a throttle key for logging without exposing client identifiers."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]
