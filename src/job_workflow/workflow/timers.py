"""Clock and one-shot timers.

Timers never fire on their own: the owner calls `fire_due()` (the engine does
so from its dispatch loop). This keeps every state change on one thread of
control and makes runs with `ManualClock` fully deterministic.
"""

from __future__ import annotations

import heapq
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float: ...


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += seconds


@dataclass(eq=False)
class TimerHandle:
    due: float
    callback: Callable[[], None]
    label: str = ""
    cancelled: bool = field(default=False)


class TimerService:
    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    @property
    def clock(self) -> Clock:
        return self._clock

    def now(self) -> float:
        return self._clock.now()

    def schedule(
        self, delay: float, callback: Callable[[], None], *, label: str = ""
    ) -> TimerHandle:
        due = self._clock.now() + max(delay, 0.0)
        handle = TimerHandle(due=due, callback=callback, label=label)
        heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancelled = True

    def next_due(self) -> float | None:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def fire_due(self) -> int:
        """Fire every timer due at the current time, earliest first.

        Timers with equal due times fire in scheduling order. Timers scheduled
        by a callback fire in the same pass if they are already due.
        """

        fired = 0
        now = self._clock.now()
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            handle.cancelled = True
            handle.callback()
            fired += 1
        return fired

    def __len__(self) -> int:
        return sum(1 for _, _, h in self._heap if not h.cancelled)
