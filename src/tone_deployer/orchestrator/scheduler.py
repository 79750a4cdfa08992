"""Timer scheduling for the step sequencer.

The sequencer never sleeps itself; it asks a Scheduler to call it back later
and keeps the returned handle so the timer can be cancelled. Two clocks are
provided:

- VirtualScheduler: logical milliseconds, advanced explicitly (tests, dry runs)
- SleepScheduler: wall-clock milliseconds, waits with time.sleep
"""

from __future__ import annotations

import heapq
import itertools
import time
from typing import Callable, List, Optional, Tuple


class TimerHandle:
    """Handle to a scheduled callback."""

    __slots__ = ("when", "callback", "cancelled", "_seq")

    def __init__(self, when: float, seq: int, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False
        self._seq = seq

    def cancel(self) -> None:
        self.cancelled = True

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "pending"
        return f"<TimerHandle when={self.when:.0f}ms {state}>"


class Scheduler:
    """
    定时器调度器基类

    定时器按 (触发时间, 注册顺序) 排序触发；子类只决定“如何等到那个时间”。
    """

    def __init__(self) -> None:
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    @property
    def now_ms(self) -> float:
        raise NotImplementedError

    def _wait_until(self, when_ms: float) -> None:
        raise NotImplementedError

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Schedule `callback` to run `delay_ms` from now."""
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        seq = next(self._counter)
        handle = TimerHandle(self.now_ms + delay_ms, seq, callback)
        heapq.heappush(self._queue, (handle.when, seq, handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of timers that have neither fired nor been cancelled."""
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def next_due(self) -> Optional[float]:
        self._drop_cancelled()
        return self._queue[0][0] if self._queue else None

    def run_once(self) -> bool:
        """等待并触发下一个定时器；队列为空时返回 False"""
        self._drop_cancelled()
        if not self._queue:
            return False
        when, _, handle = heapq.heappop(self._queue)
        self._wait_until(when)
        handle.callback()
        return True

    def run_until_idle(self, max_callbacks: int = 100_000) -> int:
        """Fire timers until none remain. Returns the number fired."""
        fired = 0
        while self.run_once():
            fired += 1
            if fired >= max_callbacks:
                raise RuntimeError(f"Scheduler did not go idle after {fired} callbacks")
        return fired

    def _drop_cancelled(self) -> None:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)


class VirtualScheduler(Scheduler):
    """Scheduler driven by a logical clock; nothing ever sleeps."""

    def __init__(self, start_ms: float = 0.0) -> None:
        super().__init__()
        self._now = float(start_ms)

    @property
    def now_ms(self) -> float:
        return self._now

    def _wait_until(self, when_ms: float) -> None:
        if when_ms > self._now:
            self._now = when_ms

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward, firing every timer due inside the window."""
        target = self._now + delta_ms
        fired = 0
        while True:
            due = self.next_due()
            if due is None or due > target:
                break
            self.run_once()
            fired += 1
        self._now = target
        return fired


class SleepScheduler(Scheduler):
    """Scheduler driven by the monotonic wall clock."""

    def __init__(self) -> None:
        super().__init__()
        self._origin = time.monotonic()

    @property
    def now_ms(self) -> float:
        return (time.monotonic() - self._origin) * 1000.0

    def _wait_until(self, when_ms: float) -> None:
        remaining = (when_ms - self.now_ms) / 1000.0
        if remaining > 0:
            time.sleep(remaining)
