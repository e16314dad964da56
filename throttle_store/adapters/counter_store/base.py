"""Throttle counter store interfaces.

The rate-limit policy depends on this abstraction (not the concrete
implementation) so the shared Redis store and the in-memory double are
interchangeable.

Record layout shared by all implementations: one hash per physical key with
exactly two fields, ``totalrequest`` (integer) and ``timestamp`` (see
``throttle_store.utils.timestamps``), plus a store-managed TTL.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping

from throttle_store.core.keys import KeyNamespacer, hash_key_for_logging
from throttle_store.utils.timestamps import decode_timestamp, encode_timestamp

logger = logging.getLogger(__name__)

TOTAL_REQUESTS_FIELD = "totalrequest"
TIMESTAMP_FIELD = "timestamp"
RECORD_FIELDS = (TOTAL_REQUESTS_FIELD, TIMESTAMP_FIELD)

TTL = timedelta | int | float


@dataclass(frozen=True)
class ThrottleCounter:
    """Requests observed in one window.

    Attributes:
        total_requests: Requests counted in the current window (>= 0).
        timestamp: When the window (and this counter) was created.
    """

    total_requests: int
    timestamp: datetime

    def __post_init__(self) -> None:
        if isinstance(self.total_requests, bool) or not isinstance(self.total_requests, int):
            raise TypeError("total_requests must be an int")
        if self.total_requests < 0:
            raise ValueError("total_requests must be >= 0")


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class CounterLookup:
    """Tagged result of reading a counter record.

    Attributes:
        status: Whether the record was found, missing, or malformed.
        counter: The decoded counter when status is FOUND.
        reason: Why the record was rejected when status is MALFORMED.
        raw_timestamp: The stored ``timestamp`` field exactly as read (None
            when the record or the field is missing). Identifies the window
            for ``remove_if_unchanged``.
    """

    status: LookupStatus
    counter: ThrottleCounter | None = None
    reason: str | None = None
    raw_timestamp: str | bytes | None = None

    @classmethod
    def found(
        cls, counter: ThrottleCounter, raw_timestamp: str | bytes | None = None
    ) -> "CounterLookup":
        return cls(status=LookupStatus.FOUND, counter=counter, raw_timestamp=raw_timestamp)

    @classmethod
    def not_found(cls) -> "CounterLookup":
        return cls(status=LookupStatus.NOT_FOUND)

    @classmethod
    def malformed(cls, reason: str, raw_timestamp: str | bytes | None = None) -> "CounterLookup":
        return cls(status=LookupStatus.MALFORMED, reason=reason, raw_timestamp=raw_timestamp)


class SaveOutcome(str, Enum):
    """What a ``save`` call did to the stored record."""

    CREATED = "created"
    INCREMENTED = "incremented"
    SKIPPED = "skipped"


def ttl_to_milliseconds(ttl: TTL) -> int:
    """Convert a TTL to whole milliseconds.

    Sub-millisecond remainders round up, so any positive TTL stays positive.

    Raises:
        ValueError: If the TTL is not a positive finite duration.
    """

    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
    if not math.isfinite(seconds) or seconds <= 0:
        raise ValueError("ttl must be a positive finite duration")
    return math.ceil(round(seconds * 1000, 6))


def _as_text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def encode_record(counter: ThrottleCounter) -> dict[str, str]:
    """Serialize a counter into its stored field map."""

    return {
        TOTAL_REQUESTS_FIELD: str(counter.total_requests),
        TIMESTAMP_FIELD: encode_timestamp(counter.timestamp),
    }


def parse_record(fields: Mapping[Any, Any]) -> CounterLookup:
    """Decode a stored field map into a lookup result.

    Any shape other than exactly the two counter fields, a non-integer or
    negative count, an unparsable timestamp, or text that is not valid UTF-8
    is reported as malformed. Field names and values may be ``str`` or
    ``bytes``.
    """

    if not fields:
        return CounterLookup.not_found()

    raw_timestamp = None
    for name, value in fields.items():
        if name in (TIMESTAMP_FIELD, TIMESTAMP_FIELD.encode()):
            raw_timestamp = value

    try:
        decoded = {_as_text(k): v for k, v in fields.items()}
        if len(decoded) != len(RECORD_FIELDS) or set(decoded) != set(RECORD_FIELDS):
            return CounterLookup.malformed(
                f"unexpected fields: {sorted(decoded)}", raw_timestamp=raw_timestamp
            )
        total_requests = int(_as_text(decoded[TOTAL_REQUESTS_FIELD]))
        timestamp = decode_timestamp(decoded[TIMESTAMP_FIELD])
        counter = ThrottleCounter(total_requests=total_requests, timestamp=timestamp)
    except ValueError as exc:
        # UnicodeDecodeError is a ValueError
        return CounterLookup.malformed(str(exc), raw_timestamp=raw_timestamp)

    return CounterLookup.found(counter, raw_timestamp=raw_timestamp)


class AbstractCounterStore(ABC):
    """Interface for throttle counter stores.

    Implementations hold no counter state of their own beyond what the backing
    store keeps; every operation maps to one round-trip against it.
    """

    def __init__(self, *, key_prefix: str) -> None:
        self._namespacer = KeyNamespacer(key_prefix)

    @property
    def key_prefix(self) -> str:
        return self._namespacer.prefix

    def make_key(self, throttle_id: Any) -> str:
        """Return the physical key used for ``throttle_id``."""
        return self._namespacer.key(throttle_id)

    @abstractmethod
    def exists(self, throttle_id: str) -> bool:
        """Check whether a record is stored for ``throttle_id``."""
        raise NotImplementedError

    @abstractmethod
    def lookup(self, throttle_id: str) -> CounterLookup:
        """Read the record for ``throttle_id`` as a tagged result."""
        raise NotImplementedError

    @abstractmethod
    def remove(self, throttle_id: str) -> None:
        """Delete the record for ``throttle_id``. Deleting a missing key is a no-op."""
        raise NotImplementedError

    @abstractmethod
    def remove_if_unchanged(self, throttle_id: str, seen: CounterLookup) -> bool:
        """Delete the record only if it still holds the window ``seen`` read.

        The stored ``timestamp`` field is compared with ``seen.raw_timestamp``
        (a missing field matches None) in one atomic step, so a window opened
        by another process after ``seen`` was read is left alone.

        Returns:
            True when a record was deleted.
        """
        raise NotImplementedError

    @abstractmethod
    def save(self, throttle_id: str, counter: ThrottleCounter, ttl: TTL) -> SaveOutcome:
        """Record a request using the create-or-increment protocol.

        When ``counter.total_requests > 1`` the stored count is incremented by
        one. Otherwise the record is created with both fields and the TTL,
        unless it already exists, in which case nothing is written.

        Args:
            throttle_id: Caller-supplied identifier.
            counter: What the caller expects the next state to look like.
            ttl: Lifetime of a newly created record.

        Returns:
            SaveOutcome describing the applied change.
        """
        raise NotImplementedError

    @abstractmethod
    def hit(self, throttle_id: str, timestamp: datetime, ttl: TTL) -> ThrottleCounter:
        """Atomically increment the count, creating the window if needed.

        A new record gets ``timestamp`` and ``ttl``; an existing one keeps its
        own. Returns the counter as stored after the increment.
        """
        raise NotImplementedError

    def get(self, throttle_id: str) -> ThrottleCounter | None:
        """Return the stored counter, or None when missing or malformed."""

        result = self.lookup(throttle_id)
        if result.status is LookupStatus.MALFORMED:
            logger.warning(
                "counter_store.malformed",
                extra={
                    "key_hash": hash_key_for_logging(self.make_key(throttle_id)),
                    "reason": result.reason,
                },
            )
        return result.counter

    def clear(self) -> None:
        """No-op: counters expire on their own through their TTL."""

    def ping(self) -> bool:
        """Check connectivity with the backing store."""
        return True
