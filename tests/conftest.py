"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and points the store at the
in-memory backend so importing the app never needs a Redis server.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("STORE_KEY_PREFIX", "test")
os.environ.setdefault("LOG_FORMAT", "plain")

import fakeredis
import pytest

from throttle_store.adapters.counter_store import InMemoryCounterStore, RedisCounterStore


class FakeClock:
    """Deterministic clock used to test expiration and window logic."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis_client() -> fakeredis.FakeRedis:
    """Fresh fake Redis server per test (Lua scripting via lupa)."""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_store(redis_client: fakeredis.FakeRedis) -> RedisCounterStore:
    return RedisCounterStore(redis_client, key_prefix="test")


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(key_prefix="test", clock=clock)


@pytest.fixture(params=["memory", "redis"])
def store(request: pytest.FixtureRequest):
    """Run contract tests against both implementations."""
    return request.getfixturevalue(f"{request.param}_store")
