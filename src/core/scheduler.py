"""
Timer scheduling for the round loop

Two implementations share one ordering model:

- ThreadedScheduler: a single dispatch thread on the monotonic wall clock.
  Every callback runs on that thread, so engine handlers never overlap.
- ManualScheduler: a virtual clock advanced explicitly, for tests and fast
  offline simulation.

Usage:
    scheduler = ThreadedScheduler()
    scheduler.start()
    handle = scheduler.schedule_every(0.05, on_tick)
    scheduler.cancel(handle)
    scheduler.stop()
"""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class TimerHandle:
    """Opaque handle returned by the schedule_* calls"""

    handle_id: int
    callback: Callable[[], None]
    due: float
    interval: float | None = None
    cancelled: bool = False
    fired: int = field(default=0)

    @property
    def periodic(self) -> bool:
        return self.interval is not None

    @property
    def active(self) -> bool:
        return not self.cancelled and (self.periodic or self.fired == 0)


class Scheduler(ABC):
    """Periodic and one-shot callbacks with explicit cancellation"""

    def __init__(self):
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._ids = itertools.count(1)
        self._seq = itertools.count()
        self._lock = threading.RLock()
        self._stats = {"scheduled": 0, "fired": 0, "cancelled": 0, "errors": 0}

    @abstractmethod
    def now(self) -> float:
        """Current time on this scheduler's clock (seconds)"""

    def schedule_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback every interval seconds, first run one interval from now"""
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        return self._push(TimerHandle(next(self._ids), callback, self.now() + interval, interval))

    def schedule_once(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay seconds"""
        if delay < 0:
            raise ValueError(f"delay cannot be negative, got {delay}")
        return self._push(TimerHandle(next(self._ids), callback, self.now() + delay))

    def cancel(self, handle: TimerHandle | None):
        """Cancel a pending timer; unknown or finished handles are ignored"""
        if handle is None:
            return
        with self._lock:
            if handle.cancelled:
                return
            handle.cancelled = True
            self._stats["cancelled"] += 1
        self._wake()

    def pending(self) -> int:
        """Number of timers that can still fire"""
        with self._lock:
            return sum(1 for _, _, handle in self._heap if not handle.cancelled)

    def get_stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        stats["pending"] = self.pending()
        return stats

    def _push(self, handle: TimerHandle) -> TimerHandle:
        with self._lock:
            heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
            self._stats["scheduled"] += 1
        self._wake()
        return handle

    def _wake(self):
        """Hook for implementations that sleep between timers"""

    def _pop_due(self, now: float) -> TimerHandle | None:
        """Pop the earliest timer due at or before now, skipping cancelled ones"""
        with self._lock:
            while self._heap:
                due, _, handle = self._heap[0]
                if handle.cancelled:
                    heapq.heappop(self._heap)
                    continue
                if due > now:
                    return None
                heapq.heappop(self._heap)
                if handle.periodic:
                    # Reschedule from the nominal due time to avoid drift
                    handle.due = due + handle.interval
                    heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
                return handle
            return None

    def _next_due(self) -> float | None:
        with self._lock:
            while self._heap and self._heap[0][2].cancelled:
                heapq.heappop(self._heap)
            return self._heap[0][0] if self._heap else None

    def _fire(self, handle: TimerHandle):
        if handle.cancelled:
            return
        handle.fired += 1
        self._stats["fired"] += 1
        try:
            handle.callback()
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Error in scheduled callback {handle.handle_id}: {e}", exc_info=True)


class ThreadedScheduler(Scheduler):
    """Wall-clock scheduler with one dispatch thread"""

    def __init__(self, name: str = "RoundScheduler"):
        super().__init__()
        self._name = name
        self._cond = threading.Condition(self._lock)
        self._running = False
        self._thread: threading.Thread | None = None

    def now(self) -> float:
        return time.monotonic()

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the dispatch thread"""
        with self._lock:
            if self._running:
                logger.warning("Scheduler already running")
                return
            self._running = True
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
        logger.info("Scheduler started")

    def stop(self, timeout: float = 2.0):
        """Stop dispatching; pending timers are dropped"""
        with self._lock:
            if not self._running:
                return
            self._running = False
            for _, _, handle in self._heap:
                handle.cancelled = True
            self._heap.clear()
            self._cond.notify_all()

        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.error("Scheduler thread did not stop cleanly within timeout")
        logger.info("Scheduler stopped")

    def _wake(self):
        with self._lock:
            self._cond.notify_all()

    def _run(self):
        logger.debug("Scheduler loop started")
        while True:
            with self._lock:
                if not self._running:
                    break
                handle = self._pop_due(self.now())
                if handle is None:
                    next_due = self._next_due()
                    timeout = None if next_due is None else max(0.0, next_due - self.now())
                    self._cond.wait(timeout=timeout)
                    continue
            # Callback runs without the scheduler lock held
            self._fire(handle)
        logger.debug("Scheduler loop ended")


class ManualScheduler(Scheduler):
    """
    Virtual clock for deterministic runs

    Nothing fires until advance() or run_next() is called.
    """

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, firing every timer that falls due in order

        Returns:
            Number of callbacks fired
        """
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        target = self._now + seconds
        fired = 0
        while True:
            next_due = self._next_due()
            if next_due is None or next_due > target:
                break
            self._now = max(self._now, next_due)
            handle = self._pop_due(self._now)
            if handle is None:
                continue
            self._fire(handle)
            fired += 1
        self._now = target
        return fired

    def run_next(self) -> bool:
        """Jump to the next due timer and fire it; False when nothing is pending"""
        next_due = self._next_due()
        if next_due is None:
            return False
        self._now = max(self._now, next_due)
        handle = self._pop_due(self._now)
        if handle is not None:
            self._fire(handle)
        return True

    def run_until(self, predicate: Callable[[], bool], max_steps: int = 100_000) -> bool:
        """Fire timers one by one until predicate() holds"""
        for _ in range(max_steps):
            if predicate():
                return True
            if not self.run_next():
                return predicate()
        return predicate()

    def run_until_idle(self, max_steps: int = 100_000) -> int:
        """Fire timers until none are pending; returns the number fired"""
        fired = 0
        while fired < max_steps and self.run_next():
            fired += 1
        return fired
