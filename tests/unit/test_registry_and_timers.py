"""Unit tests for token correlation and timers."""

from __future__ import annotations

import pytest

from job_workflow.workflow.registry import TokenRegistry
from job_workflow.workflow.timers import ManualClock, TimerService


def test_token_resolves_once() -> None:
    registry = TokenRegistry()
    registry.register("t1", "e1")

    assert registry.lookup("t1") == "e1"
    assert len(registry) == 1
    assert registry.resolve("t1") == "e1"

    assert registry.resolve("t1") is None
    assert registry.lookup("t1") is None
    assert registry.is_resolved("t1")
    assert len(registry) == 0


def test_token_cannot_be_reissued() -> None:
    registry = TokenRegistry()
    registry.register("t1", "e1")
    registry.release("t1")
    with pytest.raises(ValueError):
        registry.register("t1", "e2")


def test_resolved_memory_is_bounded() -> None:
    registry = TokenRegistry(remember_resolved=2)
    for i in range(3):
        registry.register(f"t{i}", "e")
        registry.resolve(f"t{i}")
    assert not registry.is_resolved("t0")
    assert registry.is_resolved("t2")


def test_timers_fire_in_due_order() -> None:
    clock = ManualClock()
    timers = TimerService(clock)
    fired: list[str] = []

    timers.schedule(5, lambda: fired.append("b"))
    timers.schedule(1, lambda: fired.append("a"))
    cancelled = timers.schedule(2, lambda: fired.append("never"))
    timers.cancel(cancelled)

    assert timers.next_due() == 1
    assert timers.fire_due() == 0

    clock.advance(5)
    assert timers.fire_due() == 2
    assert fired == ["a", "b"]
    assert timers.next_due() is None
    assert len(timers) == 0


def test_timer_scheduled_by_callback_fires_if_already_due() -> None:
    clock = ManualClock()
    timers = TimerService(clock)
    fired: list[str] = []

    def first() -> None:
        fired.append("first")
        timers.schedule(0, lambda: fired.append("second"))

    timers.schedule(1, first)
    clock.advance(1)
    timers.fire_due()
    assert fired == ["first", "second"]


def test_manual_clock_cannot_go_backwards() -> None:
    with pytest.raises(ValueError):
        ManualClock().advance(-1)
