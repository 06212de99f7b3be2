"""Cooperative timer schedulers for the stream controller.

The controller never sleeps or blocks: it asks a :class:`Scheduler` to
call it back later.  Two implementations:

LoopScheduler
    One worker thread draining a heap of timers.  Submission is
    thread-safe; every callback runs on the worker thread, so the
    controller's session is only ever touched from there.

ManualScheduler
    Virtual clock advanced explicitly by the test.  Timers fire in
    deadline order, ties in submission order.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    __slots__ = ("when", "callback", "cancelled")

    def __init__(self, when: float, callback: Callback) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler(ABC):
    """Timer interface used by :class:`CommandStreamController`."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, fn: Callback) -> TimerHandle:
        """Run *fn* after *delay* seconds."""

    def call_soon(self, fn: Callback) -> TimerHandle:
        """Run *fn* as soon as possible."""
        return self.call_later(0.0, fn)

    def cancel(self, handle: TimerHandle | None) -> None:
        """Cancel *handle*; ``None`` and already-run handles are ignored."""
        if handle is not None:
            handle.cancel()


# ---------------------------------------------------------------------------
# Deterministic scheduler (tests)
# ---------------------------------------------------------------------------


class ManualScheduler(Scheduler):
    """Virtual-clock scheduler driven by :meth:`advance`.

    Parameters
    ----------
    start : float
        Initial clock value in seconds.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, fn: Callback) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, delay), fn)
        heapq.heappush(self._heap, (handle.when, next(self._seq), handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of live (not cancelled) timers."""
        return sum(1 for _, _, h in self._heap if not h.cancelled)

    def run_pending(self) -> int:
        """Run every timer due at the current time.

        Timers scheduled for "now" by the callbacks themselves run too.

        Returns
        -------
        int
            Number of callbacks executed.
        """
        return self._run_until(self._now)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due timers in order."""
        return self._run_until(self._now + seconds)

    def run_until_idle(self, max_time: float = 3600.0) -> int:
        """Fire timers until none remain or the clock passes *max_time*."""
        return self._run_until(max_time)

    def _run_until(self, deadline: float) -> int:
        ran = 0
        while self._heap and self._heap[0][0] <= deadline:
            when, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            handle.cancelled = True
            handle.callback()
            ran += 1
        if deadline > self._now and deadline != float("inf"):
            self._now = deadline
        return ran


# ---------------------------------------------------------------------------
# Threaded scheduler (real runs)
# ---------------------------------------------------------------------------


class LoopScheduler(Scheduler):
    """Single worker thread running timers from a heap.

    Examples
    --------
    >>> with LoopScheduler() as sched:
    ...     sched.call_later(0.5, lambda: print("tick"))
    """

    def __init__(self, name: str = "drawbot-scheduler") -> None:
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._stopping = False
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._started = False

    def now(self) -> float:
        return time.monotonic()

    def start(self) -> None:
        if not self._started:
            self._started = True
            self._thread.start()

    def call_later(self, delay: float, fn: Callback) -> TimerHandle:
        handle = TimerHandle(self.now() + max(0.0, delay), fn)
        with self._cond:
            heapq.heappush(self._heap, (handle.when, next(self._seq), handle))
            self._cond.notify()
        return handle

    def shutdown(self, timeout: float = 2.0) -> None:
        """Stop the worker; pending timers are discarded."""
        with self._cond:
            self._stopping = True
            self._cond.notify()
        if self._started and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._stopping:
                    if self._heap and self._heap[0][2].cancelled:
                        heapq.heappop(self._heap)
                        continue
                    if not self._heap:
                        self._cond.wait()
                        continue
                    delay = self._heap[0][0] - self.now()
                    if delay <= 0:
                        break
                    self._cond.wait(timeout=delay)
                if self._stopping:
                    return
                _, _, handle = heapq.heappop(self._heap)
                handle.cancelled = True

            try:
                handle.callback()
            except Exception:  # noqa: BLE001
                logger.exception("Scheduled callback failed")

    def __enter__(self) -> LoopScheduler:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()
