"""In-memory throttle counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a lock makes each operation atomic, which mirrors the
  guarantees the Redis scripts give.
- Stores the same serialized field map as the Redis store, so malformed
  records behave identically.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping

from throttle_store.adapters.counter_store.base import (
    TIMESTAMP_FIELD,
    TOTAL_REQUESTS_FIELD,
    TTL,
    AbstractCounterStore,
    CounterLookup,
    SaveOutcome,
    ThrottleCounter,
    encode_record,
    parse_record,
    ttl_to_milliseconds,
)
from throttle_store.utils.timestamps import decode_timestamp, encode_timestamp


@dataclass
class _Record:
    fields: dict[str, str] = field(default_factory=dict)
    expires_at: float | None = None


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping records in a process-local dict.

    Expired records are dropped lazily when their key is touched.
    """

    def __init__(
        self,
        *,
        key_prefix: str = "throttle",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            key_prefix: Namespace prefix for physical keys.
            clock: Time source returning UNIX time in seconds.
        """
        super().__init__(key_prefix=key_prefix)
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, _Record] = {}

    def _live_record_locked(self, key: str) -> _Record | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.expires_at is not None and record.expires_at <= self._clock():
            del self._records[key]
            return None
        return record

    def _expires_at(self, ttl: TTL) -> float:
        return self._clock() + ttl_to_milliseconds(ttl) / 1000

    def exists(self, throttle_id: str) -> bool:
        with self._lock:
            return self._live_record_locked(self.make_key(throttle_id)) is not None

    def lookup(self, throttle_id: str) -> CounterLookup:
        with self._lock:
            record = self._live_record_locked(self.make_key(throttle_id))
            return parse_record(dict(record.fields) if record else {})

    def remove(self, throttle_id: str) -> None:
        with self._lock:
            self._records.pop(self.make_key(throttle_id), None)

    def remove_if_unchanged(self, throttle_id: str, seen: CounterLookup) -> bool:
        key = self.make_key(throttle_id)
        with self._lock:
            record = self._live_record_locked(key)
            if record is None or record.fields.get(TIMESTAMP_FIELD) != seen.raw_timestamp:
                return False
            del self._records[key]
            return True

    def save(self, throttle_id: str, counter: ThrottleCounter, ttl: TTL) -> SaveOutcome:
        key = self.make_key(throttle_id)
        expires_at = self._expires_at(ttl)

        with self._lock:
            record = self._live_record_locked(key)

            if counter.total_requests > 1:
                if record is None:
                    record = self._records[key] = _Record()
                total = int(record.fields.get(TOTAL_REQUESTS_FIELD, 0)) + 1
                record.fields[TOTAL_REQUESTS_FIELD] = str(total)
                if record.expires_at is None:
                    record.expires_at = expires_at
                return SaveOutcome.INCREMENTED

            if record is not None:
                return SaveOutcome.SKIPPED

            self._records[key] = _Record(fields=encode_record(counter), expires_at=expires_at)
            return SaveOutcome.CREATED

    def hit(self, throttle_id: str, timestamp: datetime, ttl: TTL) -> ThrottleCounter:
        key = self.make_key(throttle_id)
        expires_at = self._expires_at(ttl)

        with self._lock:
            record = self._live_record_locked(key)
            if record is None:
                record = self._records[key] = _Record(expires_at=expires_at)
            elif record.expires_at is None:
                record.expires_at = expires_at

            total = int(record.fields.get(TOTAL_REQUESTS_FIELD, 0)) + 1
            record.fields[TOTAL_REQUESTS_FIELD] = str(total)
            record.fields.setdefault(TIMESTAMP_FIELD, encode_timestamp(timestamp))

            try:
                stored_timestamp = decode_timestamp(record.fields[TIMESTAMP_FIELD])
            except ValueError:
                stored_timestamp = timestamp

        return ThrottleCounter(total_requests=total, timestamp=stored_timestamp)

    def write_fields(
        self,
        throttle_id: str,
        fields: Mapping[str, str],
        ttl: TTL | None = None,
    ) -> None:
        """Store a raw field map for ``throttle_id``, replacing any record.

        Intended for seeding tests, including records that are not valid
        counters.
        """

        expires_at = self._expires_at(ttl) if ttl is not None else None
        with self._lock:
            self._records[self.make_key(throttle_id)] = _Record(
                fields=dict(fields), expires_at=expires_at
            )

    def ttl_remaining(self, throttle_id: str) -> float | None:
        """Seconds until the record expires, or None if missing or without TTL."""

        with self._lock:
            record = self._live_record_locked(self.make_key(throttle_id))
            if record is None or record.expires_at is None:
                return None
            return record.expires_at - self._clock()
