"""Fixed-window rate limiting on top of the shared counter store.

This module wires the counter store into the HTTP layer.

Rate limiting strategy:
- One fixed window per requester, opened by its first request and bounded by
  the counter's TTL.
- Requester key is the API key when present, otherwise the client IP.
- When the store is unreachable the request is let through (fail open) or
  rejected with 503 (fail closed), depending on settings.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Callable

import redis
from fastapi import Header, Request

from throttle_store.adapters.counter_store import (
    AbstractCounterStore,
    LookupStatus,
    SaveOutcome,
    ThrottleCounter,
    create_counter_store,
)
from throttle_store.core.config import settings
from throttle_store.core.errors import RateLimitExceededAppError, StoreUnavailableAppError
from throttle_store.core.keys import hash_key_for_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThrottleDecision:
    """Result of counting one request.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window ends.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        total_requests: Requests counted in the window, this one included.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None
    total_requests: int


class FixedWindowThrottle:
    """Counts requests per identifier and decides whether they are allowed.

    Follows the read, decide, save flow: the counter is read, a new window is
    opened if none is active, otherwise the next count is saved as an
    increment. A lost creation race is reconciled by re-reading once and
    counting the request against the winner's window.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the throttle.

        Args:
            store: Counter store shared by all processes.
            limit: Maximum number of allowed requests per window.
            window_seconds: Size of the window in seconds.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If limit or window_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        self._store = store
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def _current_counter(self, throttle_id: str, now: float) -> ThrottleCounter | None:
        """Return the active counter, discarding expired or malformed records.

        Only the record that was read is discarded: if another process has
        already replaced it with a fresh window, that window is kept and the
        following creation attempt is reconciled against it.
        """

        result = self._store.lookup(throttle_id)
        if result.status is LookupStatus.NOT_FOUND:
            return None

        counter = result.counter
        if counter is None or counter.timestamp.timestamp() + self._window_seconds <= now:
            self._store.remove_if_unchanged(throttle_id, result)
            return None
        return counter

    def _increment(
        self, throttle_id: str, current: ThrottleCounter, ttl: timedelta
    ) -> ThrottleCounter:
        candidate = ThrottleCounter(current.total_requests + 1, current.timestamp)
        # save() only increments counts above one; a stored zero must not hit the create path
        self._store.save(
            throttle_id, ThrottleCounter(max(2, candidate.total_requests), candidate.timestamp), ttl
        )
        return candidate

    def _count(self, throttle_id: str, now: float) -> ThrottleCounter:
        ttl = timedelta(seconds=self._window_seconds)
        current = self._current_counter(throttle_id, now)

        if current is not None:
            return self._increment(throttle_id, current, ttl)

        candidate = ThrottleCounter(1, datetime.fromtimestamp(now, tz=timezone.utc))
        if self._store.save(throttle_id, candidate, ttl) is not SaveOutcome.SKIPPED:
            return candidate

        winner = self._store.get(throttle_id)
        if winner is None:
            return candidate
        return self._increment(throttle_id, winner, ttl)

    def hit(self, throttle_id: str) -> ThrottleDecision:
        """Count one request for ``throttle_id``.

        Raises:
            ValueError: If throttle_id is empty.
            redis.RedisError: If the backing store cannot be reached.
        """
        if not throttle_id:
            raise ValueError("throttle_id must be a non-empty string")

        now = self._clock()
        counter = self._count(throttle_id, now)

        reset_at = int(math.ceil(counter.timestamp.timestamp() + self._window_seconds))
        remaining = max(0, self._limit - counter.total_requests)
        allowed = counter.total_requests <= self._limit

        return ThrottleDecision(
            allowed=allowed,
            limit=self._limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after_seconds=None if allowed else max(0, int(math.ceil(reset_at - now))),
            total_requests=counter.total_requests,
        )


_store: AbstractCounterStore | None = None
_throttle: FixedWindowThrottle | None = None
_throttle_config: tuple[int, int] | None = None


def get_counter_store() -> AbstractCounterStore:
    """Return the process-wide counter store built from settings."""

    global _store

    if _store is None:
        _store = create_counter_store(settings.store)
    return _store


def set_counter_store(store: AbstractCounterStore | None) -> None:
    """Replace the process-wide store (used by tests and embedding apps)."""

    global _store, _throttle

    _store = store
    _throttle = None


def get_throttle() -> FixedWindowThrottle:
    """Return a process-wide throttle instance.

    If configuration changes (primarily in tests), the throttle is rebuilt.
    """

    global _throttle, _throttle_config

    config = (
        settings.app.rate_limit_requests,
        settings.app.rate_limit_window_seconds,
    )

    if _throttle is None or _throttle_config != config:
        _throttle = FixedWindowThrottle(
            get_counter_store(),
            limit=settings.app.rate_limit_requests,
            window_seconds=settings.app.rate_limit_window_seconds,
        )
        _throttle_config = config

    return _throttle


def build_throttle_id(request: Request, x_api_key: str | None) -> str:
    """Build the throttle identifier for the current request."""

    if x_api_key:
        return f"api_key:{x_api_key}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def enforce_rate_limit(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency enforcing rate limits.

    Declared synchronous so FastAPI runs the blocking store round-trips in its
    threadpool.

    Raises:
        RateLimitExceededAppError: When the requester exceeded its budget.
        StoreUnavailableAppError: When the store is down and fail-open is off.
    """

    if not settings.app.rate_limit_enabled:
        return

    throttle_id = build_throttle_id(request, x_api_key)
    key_hash = hash_key_for_logging(throttle_id)
    key_type = "api_key" if x_api_key else "ip"

    try:
        decision = get_throttle().hit(throttle_id)
    except redis.RedisError as exc:
        if settings.app.rate_limit_fail_open:
            logger.warning(
                "rate_limit.store_unavailable",
                extra={"key_hash": key_hash, "error_type": type(exc).__name__, "fail_open": True},
            )
            return
        logger.error(
            "rate_limit.store_unavailable",
            extra={"key_hash": key_hash, "error_type": type(exc).__name__, "fail_open": False},
        )
        raise StoreUnavailableAppError(
            code="rate_limit_store_unavailable",
            message="Rate limiting is temporarily unavailable. Try again later.",
        ) from exc

    if decision.allowed:
        logger.info(
            "rate_limit.allowed",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "window_s": settings.app.rate_limit_window_seconds,
            },
        )
        return

    retry_after = decision.retry_after_seconds or 0
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_type": key_type,
            "key_hash": key_hash,
            "limit": decision.limit,
            "total_requests": decision.total_requests,
            "window_s": settings.app.rate_limit_window_seconds,
            "retry_after_s": retry_after,
        },
    )

    headers: dict[str, str] = {}
    if settings.app.rate_limit_include_headers:
        headers["Retry-After"] = str(retry_after)
        headers["X-RateLimit-Limit"] = str(decision.limit)
        headers["X-RateLimit-Remaining"] = str(decision.remaining)
        headers["X-RateLimit-Reset"] = str(decision.reset_at)

    raise RateLimitExceededAppError(
        code="rate_limit_exceeded",
        message="Rate limit exceeded. Try again later.",
        details={
            "limit": decision.limit,
            "remaining": decision.remaining,
            "reset_at": decision.reset_at,
            "retry_after": retry_after,
        },
        headers=headers or None,
    )
