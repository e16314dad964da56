"""Throttle counter store adapters.

This package provides the counter store contract, the shared Redis
implementation and a process-local double with the same behavior.
"""

from throttle_store.adapters.counter_store.base import (
    AbstractCounterStore,
    CounterLookup,
    LookupStatus,
    SaveOutcome,
    ThrottleCounter,
)
from throttle_store.adapters.counter_store.factory import create_counter_store, create_redis_client
from throttle_store.adapters.counter_store.in_memory import InMemoryCounterStore
from throttle_store.adapters.counter_store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterLookup",
    "InMemoryCounterStore",
    "LookupStatus",
    "RedisCounterStore",
    "SaveOutcome",
    "ThrottleCounter",
    "create_counter_store",
    "create_redis_client",
]
