"""Contract tests shared by the Redis and in-memory counter stores."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from throttle_store.adapters.counter_store import (
    AbstractCounterStore,
    LookupStatus,
    SaveOutcome,
    ThrottleCounter,
)
from throttle_store.adapters.counter_store.base import ttl_to_milliseconds

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
WINDOW = timedelta(seconds=60)


def _run_concurrently(workers: int, target) -> list:
    results: list = [None] * workers
    barrier = threading.Barrier(workers)

    def _worker(idx: int) -> None:
        barrier.wait()
        results[idx] = target(idx)

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_save_then_get_scenario(store: AbstractCounterStore) -> None:
    assert store.save("A", ThrottleCounter(1, T0), WINDOW) is SaveOutcome.CREATED
    assert store.get("A") == ThrottleCounter(total_requests=1, timestamp=T0)

    assert store.save("A", ThrottleCounter(2, T0), WINDOW) is SaveOutcome.INCREMENTED
    assert store.get("A") == ThrottleCounter(total_requests=2, timestamp=T0)


def test_increment_keeps_creation_timestamp(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)
    store.save("A", ThrottleCounter(2, T0 + timedelta(seconds=30)), WINDOW)

    assert store.get("A").timestamp == T0


def test_exists_reflects_presence(store: AbstractCounterStore) -> None:
    assert store.exists("A") is False

    store.save("A", ThrottleCounter(1, T0), WINDOW)

    assert store.exists("A") is True
    assert store.exists("B") is False


def test_get_missing_returns_none(store: AbstractCounterStore) -> None:
    assert store.get("missing") is None
    assert store.lookup("missing").status is LookupStatus.NOT_FOUND


def test_creation_is_skipped_when_counter_exists(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)
    store.save("A", ThrottleCounter(2, T0), WINDOW)

    later = T0 + timedelta(seconds=5)
    assert store.save("A", ThrottleCounter(1, later), WINDOW) is SaveOutcome.SKIPPED
    assert store.get("A") == ThrottleCounter(2, T0)


def test_zero_count_takes_creation_path(store: AbstractCounterStore) -> None:
    assert store.save("A", ThrottleCounter(0, T0), WINDOW) is SaveOutcome.CREATED
    assert store.get("A") == ThrottleCounter(0, T0)


def test_remove_deletes_counter(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)

    store.remove("A")

    assert store.exists("A") is False
    assert store.get("A") is None


def test_remove_is_idempotent(store: AbstractCounterStore) -> None:
    store.save("B", ThrottleCounter(1, T0), WINDOW)

    store.remove("A")
    store.remove("A")

    assert store.get("B") == ThrottleCounter(1, T0)


def test_remove_if_unchanged_deletes_the_window_that_was_read(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)
    seen = store.lookup("A")

    assert store.remove_if_unchanged("A", seen) is True
    assert store.exists("A") is False
    assert store.remove_if_unchanged("A", seen) is False


def test_remove_if_unchanged_keeps_a_replaced_window(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)
    seen = store.lookup("A")
    store.remove("A")
    fresh = ThrottleCounter(1, T0 + timedelta(minutes=5))
    store.save("A", fresh, WINDOW)

    assert store.remove_if_unchanged("A", seen) is False
    assert store.get("A") == fresh


def test_remove_if_unchanged_deletes_partial_record(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(3, T0), WINDOW)
    seen = store.lookup("A")
    assert seen.status is LookupStatus.MALFORMED

    assert store.remove_if_unchanged("A", seen) is True
    assert store.exists("A") is False


def test_clear_is_noop(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)

    store.clear()

    assert store.exists("A") is True


def test_counters_are_isolated_by_id(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)
    store.save("A", ThrottleCounter(2, T0), WINDOW)
    store.save("B", ThrottleCounter(1, T0), WINDOW)

    assert store.get("A").total_requests == 2
    assert store.get("B").total_requests == 1


def test_saved_record_uses_namespaced_key(store: AbstractCounterStore) -> None:
    assert store.make_key("ip:10.0.0.1") == "test|throttle:ip:10.0.0.1"


@pytest.mark.parametrize("ttl", [0, -1, timedelta(0), float("nan"), float("inf")])
def test_non_positive_ttl_is_rejected(store: AbstractCounterStore, ttl) -> None:
    with pytest.raises(ValueError):
        store.save("A", ThrottleCounter(1, T0), ttl)


def test_single_creator_under_concurrency(store: AbstractCounterStore) -> None:
    workers = 16

    outcomes = _run_concurrently(
        workers,
        lambda idx: store.save("A", ThrottleCounter(1, T0 + timedelta(seconds=idx)), WINDOW),
    )

    assert outcomes.count(SaveOutcome.CREATED) == 1
    assert outcomes.count(SaveOutcome.SKIPPED) == workers - 1

    winner = outcomes.index(SaveOutcome.CREATED)
    assert store.get("A") == ThrottleCounter(1, T0 + timedelta(seconds=winner))


def test_increments_commute_under_concurrency(store: AbstractCounterStore) -> None:
    store.save("A", ThrottleCounter(1, T0), WINDOW)
    increments = 25

    outcomes = _run_concurrently(
        increments,
        lambda idx: store.save("A", ThrottleCounter(idx + 2, T0), WINDOW),
    )

    assert set(outcomes) == {SaveOutcome.INCREMENTED}
    assert store.get("A") == ThrottleCounter(1 + increments, T0)


def test_hit_opens_window_then_increments(store: AbstractCounterStore) -> None:
    first = store.hit("A", T0, WINDOW)
    second = store.hit("A", T0 + timedelta(seconds=10), WINDOW)

    assert first == ThrottleCounter(1, T0)
    assert second == ThrottleCounter(2, T0)
    assert store.get("A") == ThrottleCounter(2, T0)


def test_hit_counts_every_concurrent_request(store: AbstractCounterStore) -> None:
    workers = 20

    counters = _run_concurrently(workers, lambda idx: store.hit("A", T0, WINDOW))

    assert sorted(c.total_requests for c in counters) == list(range(1, workers + 1))
    assert store.get("A").total_requests == workers


@pytest.mark.parametrize(
    "ttl, expected",
    [
        (timedelta(microseconds=1), 1),
        (0.0004, 1),
        (0.07, 70),
        (timedelta(seconds=60), 60_000),
        (2, 2_000),
    ],
)
def test_ttl_rounds_up_to_whole_milliseconds(ttl, expected: int) -> None:
    assert ttl_to_milliseconds(ttl) == expected


@pytest.mark.parametrize("total_requests", [True, 2.5, "3"])
def test_counter_requires_integer_count(total_requests) -> None:
    with pytest.raises(TypeError):
        ThrottleCounter(total_requests, T0)


def test_counter_rejects_negative_count() -> None:
    with pytest.raises(ValueError):
        ThrottleCounter(-1, T0)
