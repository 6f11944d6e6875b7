"""Tests for the rate gate over the in-memory counter store."""

from __future__ import annotations

import anyio
import pytest

from notes_service.security.rate_gate import (
    RateGate,
    StoreUnavailableError,
    ThrottledError,
    WindowUsage,
)
from notes_service.security.rate_limiter import InMemoryCounterStore

pytestmark = pytest.mark.anyio


class BrokenStore:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.calls = 0

    async def record_and_count(self, identity: str, *, window_seconds: int, limit: int) -> WindowUsage:
        self.calls += 1
        raise self.exc


def make_gate(clock, *, limit: int, window_seconds: int = 60) -> RateGate:
    return RateGate(InMemoryCounterStore(clock=clock), limit=limit, window_seconds=window_seconds)


async def test_admits_up_to_limit_then_denies(clock):
    gate = make_gate(clock, limit=5)

    decisions = []
    for _ in range(5):
        decisions.append(await gate.check_and_admit("x"))
        clock.advance(0.125)

    assert all(decision.allowed for decision in decisions)
    assert [decision.remaining for decision in decisions] == [4, 3, 2, 1, 0]

    sixth = await gate.check_and_admit("x")
    assert not sixth.allowed
    assert sixth.identity == "x"
    assert sixth.limit == 5
    assert sixth.window_seconds == 60
    assert sixth.remaining == 0


async def test_window_bound_holds_for_many_attempts(clock):
    gate = make_gate(clock, limit=10)

    allowed = 0
    for _ in range(200):
        if (await gate.check_and_admit("x")).allowed:
            allowed += 1
        clock.advance(0.25)

    # 200 attempts span 50 seconds, all inside a single window
    assert allowed == 10


async def test_no_double_burst_at_window_boundary(clock):
    gate = make_gate(clock, limit=5)

    for _ in range(5):
        assert (await gate.check_and_admit("x")).allowed

    clock.advance(59.5)
    late = [await gate.check_and_admit("x") for _ in range(5)]
    assert not any(decision.allowed for decision in late)

    clock.advance(0.5)
    fresh = [await gate.check_and_admit("x") for _ in range(6)]
    assert [decision.allowed for decision in fresh] == [True] * 5 + [False]


async def test_recovers_one_slot_per_expired_entry(clock):
    gate = make_gate(clock, limit=3)

    for _ in range(3):
        assert (await gate.check_and_admit("x")).allowed
        clock.advance(10)

    # now = start + 30
    assert not (await gate.check_and_admit("x")).allowed

    clock.advance(30)
    assert (await gate.check_and_admit("x")).allowed
    assert not (await gate.check_and_admit("x")).allowed

    clock.advance(10)
    assert (await gate.check_and_admit("x")).allowed
    assert not (await gate.check_and_admit("x")).allowed


async def test_denied_attempts_do_not_extend_the_window(clock):
    gate = make_gate(clock, limit=2)

    assert (await gate.check_and_admit("x")).allowed
    assert (await gate.check_and_admit("x")).allowed

    for _ in range(50):
        assert not (await gate.check_and_admit("x")).allowed
        clock.advance(1)

    clock.advance(9.5)
    assert not (await gate.check_and_admit("x")).allowed

    clock.advance(0.5)
    assert (await gate.check_and_admit("x")).allowed
    assert (await gate.check_and_admit("x")).allowed
    assert not (await gate.check_and_admit("x")).allowed


async def test_reset_after_reports_time_until_oldest_entry_expires(clock):
    gate = make_gate(clock, limit=1)

    first = await gate.check_and_admit("x")
    assert first.reset_after == 60

    clock.advance(15)
    denied = await gate.check_and_admit("x")
    assert not denied.allowed
    assert denied.reset_after == 45


async def test_identities_are_isolated_under_concurrency(clock):
    gate = make_gate(clock, limit=100)
    results: dict[str, list[bool]] = {"a": [], "b": []}

    async def attempt(identity: str) -> None:
        decision = await gate.check_and_admit(identity)
        results[identity].append(decision.allowed)

    async with anyio.create_task_group() as tg:
        for _ in range(100):
            tg.start_soon(attempt, "a")
            tg.start_soon(attempt, "b")

    assert results["a"].count(True) == 100
    assert results["b"].count(True) == 100
    assert not (await gate.check_and_admit("a")).allowed
    assert not (await gate.check_and_admit("b")).allowed


async def test_admit_raises_throttled_error_with_decision(clock):
    gate = make_gate(clock, limit=1)

    decision = await gate.admit("x")
    assert decision.allowed

    with pytest.raises(ThrottledError) as excinfo:
        await gate.admit("x")
    assert excinfo.value.decision.allowed is False
    assert excinfo.value.decision.identity == "x"


async def test_store_failure_is_raised_not_decided():
    store = BrokenStore(ConnectionError("connection refused"))
    gate = RateGate(store, limit=5, window_seconds=60)

    with pytest.raises(StoreUnavailableError) as excinfo:
        await gate.check_and_admit("x")
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert store.calls == 1


async def test_store_unavailable_error_passes_through_unchanged():
    original = StoreUnavailableError("redis down")
    gate = RateGate(BrokenStore(original), limit=5, window_seconds=60)

    with pytest.raises(StoreUnavailableError) as excinfo:
        await gate.admit("x")
    assert excinfo.value is original


async def test_empty_identity_is_rejected(clock):
    gate = make_gate(clock, limit=1)
    with pytest.raises(ValueError):
        await gate.check_and_admit("")


@pytest.mark.parametrize(("limit", "window_seconds"), [(0, 60), (5, 0), (-1, 60)])
def test_invalid_configuration_is_rejected(limit, window_seconds):
    with pytest.raises(ValueError):
        RateGate(InMemoryCounterStore(), limit=limit, window_seconds=window_seconds)


async def test_memory_store_evicts_identities_idle_past_the_window(clock):
    store = InMemoryCounterStore(clock=clock)
    for idx in range(1000):
        await store.record_and_count(f"client:10.0.{idx // 256}.{idx % 256}", window_seconds=60, limit=5)
    assert len(store._events) == 1000

    clock.advance(3600)
    await store.record_and_count("client:10.9.9.9", window_seconds=60, limit=5)

    assert list(store._events) == ["client:10.9.9.9"]


async def test_memory_store_sweep_keeps_identities_still_in_window(clock):
    store = InMemoryCounterStore(clock=clock)
    await store.record_and_count("old", window_seconds=60, limit=5)
    clock.advance(30)
    await store.record_and_count("recent", window_seconds=60, limit=5)

    clock.advance(45)
    usage = await store.record_and_count("recent", window_seconds=60, limit=5)

    assert set(store._events) == {"recent"}
    assert usage.count == 2
