"""Factory pattern for creating counter store instances."""

from __future__ import annotations

import redis

from throttle_store.adapters.counter_store.base import AbstractCounterStore
from throttle_store.adapters.counter_store.in_memory import InMemoryCounterStore
from throttle_store.adapters.counter_store.redis_store import RedisCounterStore
from throttle_store.core.config import StoreSettings, settings
from throttle_store.core.errors import ValidationAppError


def create_redis_client(store_settings: StoreSettings) -> redis.Redis:
    """Build a Redis client from settings.

    The client owns a connection pool; create it once per process and share it.
    Replies stay raw bytes so the store decodes them itself and can report
    undecodable records as malformed.
    """
    return redis.Redis.from_url(
        store_settings.redis_url,
        decode_responses=False,
        socket_timeout=store_settings.socket_timeout_seconds,
        socket_connect_timeout=store_settings.socket_connect_timeout_seconds,
    )


def create_counter_store(
    store_settings: StoreSettings | None = None,
    *,
    client: redis.Redis | None = None,
) -> AbstractCounterStore:
    """Factory function to instantiate the configured counter store.

    Args:
        store_settings: Store configuration; defaults to global settings.
        client: Pre-built Redis client (e.g. shared pool or test double).
            Only used by the redis backend.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown or the prefix is invalid.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    try:
        if backend == "redis":
            return RedisCounterStore(
                client if client is not None else create_redis_client(cfg),
                key_prefix=cfg.key_prefix,
            )
        if backend == "memory":
            return InMemoryCounterStore(key_prefix=cfg.key_prefix)
    except ValueError as exc:
        raise ValidationAppError(
            code="store_invalid_key_prefix",
            message=str(exc),
            details={"backend": backend},
        ) from exc

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: redis, memory",
        details={"backend": backend},
    )
