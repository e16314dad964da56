"""Redis-backed throttle counter store.

Counters are Redis hashes shared by every process pointing at the same
server, so limits hold across workers and hosts.

Atomicity:
- Creation runs as a Lua script that aborts when the key already exists, then
  writes both fields and the TTL. Scripts execute atomically on the server, so
  exactly one of several concurrent creators wins; the others write nothing.
- Increments use HINCRBY inside a script that also restores the TTL when the
  key has none (the key vanished and HINCRBY recreated it), so even a
  degraded record expires.

Connection errors (``redis.RedisError``) are not caught here.
"""

from __future__ import annotations

import logging
from datetime import datetime

import redis

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
from throttle_store.core.keys import hash_key_for_logging
from throttle_store.utils.timestamps import decode_timestamp, encode_timestamp

logger = logging.getLogger(__name__)


# KEYS[1] = counter key
# ARGV = total field, total value, timestamp field, timestamp value, ttl ms
# Returns 1 when the record was created, 0 when it already existed.
LUA_CREATE_IF_ABSENT = """
if redis.call("EXISTS", KEYS[1]) == 1 then
  return 0
end
redis.call("HSET", KEYS[1], ARGV[1], ARGV[2], ARGV[3], ARGV[4])
redis.call("PEXPIRE", KEYS[1], ARGV[5])
return 1
"""

# KEYS[1] = counter key
# ARGV = total field, ttl ms
# Returns the count after the increment.
LUA_INCREMENT = """
local total = redis.call("HINCRBY", KEYS[1], ARGV[1], 1)
if redis.call("PTTL", KEYS[1]) < 0 then
  redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
return total
"""

# KEYS[1] = counter key
# ARGV = total field, timestamp field, timestamp value, ttl ms
# Returns {count, stored timestamp}.
LUA_HIT = """
local created = redis.call("EXISTS", KEYS[1]) == 0
local total = redis.call("HINCRBY", KEYS[1], ARGV[1], 1)
redis.call("HSETNX", KEYS[1], ARGV[2], ARGV[3])
if created or redis.call("PTTL", KEYS[1]) < 0 then
  redis.call("PEXPIRE", KEYS[1], ARGV[4])
end
return {total, redis.call("HGET", KEYS[1], ARGV[2])}
"""

# KEYS[1] = counter key
# ARGV = timestamp field, "1" if a timestamp was seen else "0", seen timestamp
# Returns 1 when the key was deleted, 0 when it holds another window.
LUA_REMOVE_IF_UNCHANGED = """
local current = redis.call("HGET", KEYS[1], ARGV[1])
if ARGV[2] == "1" then
  if current ~= ARGV[3] then
    return 0
  end
elseif current then
  return 0
end
return redis.call("DEL", KEYS[1])
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store over a shared Redis server.

    Works with clients created with or without ``decode_responses``. Prefer
    raw bytes responses (the factory default): with ``decode_responses=True``
    redis-py decodes before the store sees the reply, so a stored value that
    is not valid UTF-8 raises ``UnicodeDecodeError`` instead of reading as
    malformed.

    Example:
        >>> client = redis.Redis.from_url("redis://localhost:6379/0")
        >>> store = RedisCounterStore(client, key_prefix="api")
    """

    def __init__(self, client: redis.Redis, *, key_prefix: str) -> None:
        super().__init__(key_prefix=key_prefix)
        self._client = client
        self._create_script = client.register_script(LUA_CREATE_IF_ABSENT)
        self._increment_script = client.register_script(LUA_INCREMENT)
        self._hit_script = client.register_script(LUA_HIT)
        self._remove_if_unchanged_script = client.register_script(LUA_REMOVE_IF_UNCHANGED)

    def ping(self) -> bool:
        return bool(self._client.ping())

    def exists(self, throttle_id: str) -> bool:
        return bool(self._client.exists(self.make_key(throttle_id)))

    def lookup(self, throttle_id: str) -> CounterLookup:
        return parse_record(self._client.hgetall(self.make_key(throttle_id)))

    def remove(self, throttle_id: str) -> None:
        self._client.delete(self.make_key(throttle_id))

    def remove_if_unchanged(self, throttle_id: str, seen: CounterLookup) -> bool:
        key = self.make_key(throttle_id)
        expected = seen.raw_timestamp
        deleted = self._remove_if_unchanged_script(
            keys=[key],
            args=[
                TIMESTAMP_FIELD,
                "0" if expected is None else "1",
                "" if expected is None else expected,
            ],
        )
        if not int(deleted):
            logger.debug(
                "counter_store.remove_skipped",
                extra={"key_hash": hash_key_for_logging(key), "reason": "window_changed"},
            )
        return bool(int(deleted))

    def save(self, throttle_id: str, counter: ThrottleCounter, ttl: TTL) -> SaveOutcome:
        key = self.make_key(throttle_id)
        ttl_ms = ttl_to_milliseconds(ttl)

        if counter.total_requests > 1:
            total = self._increment_script(keys=[key], args=[TOTAL_REQUESTS_FIELD, ttl_ms])
            logger.debug(
                "counter_store.incremented",
                extra={"key_hash": hash_key_for_logging(key), "total_requests": int(total)},
            )
            return SaveOutcome.INCREMENTED

        record = encode_record(counter)
        created = self._create_script(
            keys=[key],
            args=[
                TOTAL_REQUESTS_FIELD,
                record[TOTAL_REQUESTS_FIELD],
                TIMESTAMP_FIELD,
                record[TIMESTAMP_FIELD],
                ttl_ms,
            ],
        )
        if int(created) == 1:
            logger.debug(
                "counter_store.created",
                extra={"key_hash": hash_key_for_logging(key), "ttl_ms": ttl_ms},
            )
            return SaveOutcome.CREATED

        logger.debug(
            "counter_store.creation_skipped",
            extra={"key_hash": hash_key_for_logging(key), "reason": "already_exists"},
        )
        return SaveOutcome.SKIPPED

    def hit(self, throttle_id: str, timestamp: datetime, ttl: TTL) -> ThrottleCounter:
        key = self.make_key(throttle_id)
        total, raw_timestamp = self._hit_script(
            keys=[key],
            args=[
                TOTAL_REQUESTS_FIELD,
                TIMESTAMP_FIELD,
                encode_timestamp(timestamp),
                ttl_to_milliseconds(ttl),
            ],
        )

        try:
            stored_timestamp = decode_timestamp(raw_timestamp)
        except ValueError as exc:
            logger.warning(
                "counter_store.malformed",
                extra={"key_hash": hash_key_for_logging(key), "reason": str(exc)},
            )
            stored_timestamp = timestamp

        return ThrottleCounter(total_requests=int(total), timestamp=stored_timestamp)
