from __future__ import annotations

import time
from typing import Callable, Protocol, TypeVar

POLL_INTERVAL_MS = 100

T = TypeVar("T")


class Clock(Protocol):
    def now_ms(self) -> float: ...

    def sleep_ms(self, duration_ms: float) -> None: ...


class MonotonicClock:
    """Wall-clock independent time source used outside of tests."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0

    def sleep_ms(self, duration_ms: float) -> None:
        if duration_ms > 0:
            time.sleep(duration_ms / 1000.0)


class Deadline:
    """Overall budget shared by every poll loop of one top-level operation."""

    def __init__(self, clock: Clock, budget_ms: float | None = None) -> None:
        self.clock = clock
        self.expires_at = None if budget_ms is None else clock.now_ms() + budget_ms
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def remaining_ms(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self.clock.now_ms())

    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self.expires_at is not None and self.clock.now_ms() >= self.expires_at

    def clamp(self, timeout_ms: float) -> float:
        remaining = self.remaining_ms()
        return timeout_ms if remaining is None else min(timeout_ms, remaining)


def poll_until(
    predicate: Callable[[], T],
    timeout_ms: float,
    clock: Clock,
    interval_ms: float = POLL_INTERVAL_MS,
    deadline: Deadline | None = None,
) -> T | None:
    """Evaluates a predicate every tick until it is truthy or the budget runs out.

    The predicate is always evaluated at least once unless the deadline has
    already expired. A timeout is reported no earlier than ``timeout_ms`` and no
    later than one tick after it.
    """

    start = clock.now_ms()
    budget = timeout_ms if deadline is None else deadline.clamp(timeout_ms)
    while True:
        if deadline is not None and deadline.expired():
            return None
        result = predicate()
        if result:
            return result
        elapsed = clock.now_ms() - start
        if elapsed >= budget:
            return None
        clock.sleep_ms(min(interval_ms, budget - elapsed))
