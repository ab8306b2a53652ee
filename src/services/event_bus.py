"""
Event Bus - carries engine notifications to whoever renders them

The round loop publishes and never waits on a subscriber. By default events
go through a bounded queue drained by one daemon thread; a synchronous bus
dispatches on the publishing thread instead (headless runs, tests).

Subscribers are held weakly unless asked otherwise, so a discarded view does
not keep receiving ticks. Callbacks always run with no bus lock held.
"""

import logging
import queue
import threading
import time
import weakref
from collections.abc import Callable
from enum import Enum
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


class Events(Enum):
    """Notifications published by the round loop"""

    # Session
    SESSION_STARTED = "session.started"

    # Round lifecycle
    ROUND_WAITING = "round.waiting"
    ROUND_STARTED = "round.started"
    ROUND_CRASHED = "round.crashed"
    MULTIPLIER_TICK = "round.tick"
    HISTORY_UPDATED = "round.history"

    # Player bet
    BET_PLACED = "bet.placed"
    BET_CASHED_OUT = "bet.cashed_out"
    BET_LOST = "bet.lost"
    BET_CLEARED = "bet.cleared"
    BALANCE_CHANGED = "bet.balance_changed"

    # Live activity / flavor
    OPPONENTS_UPDATED = "lobby.opponents"
    BANNERS_CLEARED = "ui.banners_cleared"
    COMMENTARY_UPDATED = "ui.commentary"


class _Subscription(NamedTuple):
    key: Any
    ref: Any  # weakref.ref, weakref.WeakMethod or the callable itself

    def resolve(self) -> Callable | None:
        if isinstance(self.ref, weakref.ReferenceType):
            return self.ref()
        return self.ref if callable(self.ref) else None


class EventBus:
    """
    Usage:
        bus = EventBus()
        bus.start()
        bus.subscribe(Events.ROUND_CRASHED, view.on_crash)
        bus.publish(Events.ROUND_CRASHED, payload)   # view.on_crash({"name": ..., "data": payload})
        bus.stop()
    """

    SHUTDOWN_ATTEMPTS = 10
    CAPACITY_WARNING = 0.8

    def __init__(self, max_queue_size: int = 5000, synchronous: bool = False):
        self._synchronous = synchronous
        self._subscriptions: dict[Events, list[_Subscription]] = {}
        self._lock = threading.RLock()

        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._processing = False
        self._thread: threading.Thread | None = None

        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "events_dropped": 0,
            "errors": 0,
        }
        mode = "synchronous" if synchronous else f"queued (max {max_queue_size})"
        logger.debug(f"EventBus created, {mode}")

    @property
    def synchronous(self) -> bool:
        return self._synchronous

    # ========== Lifecycle ==========

    def start(self):
        """Spawn the dispatch thread; nothing to do for a synchronous bus"""
        if self._synchronous or self._processing:
            return
        self._processing = True
        self._thread = threading.Thread(target=self._drain, name="EventBus", daemon=True)
        self._thread.start()
        logger.info("EventBus dispatch thread running")

    def stop(self):
        """Stop the dispatch thread, discarding queued events if the sentinel cannot fit"""
        if not self._processing:
            return
        self._processing = False

        for attempt in range(1, self.SHUTDOWN_ATTEMPTS + 1):
            try:
                self._queue.put(None, timeout=0.2)
                break
            except queue.Full:
                self._discard_one()
                logger.debug(f"Queue full on shutdown, discarded an event (attempt {attempt})")
                time.sleep(0.05)
        else:
            logger.warning("Could not enqueue shutdown sentinel")

        if self._thread is not None:
            self._thread.join(timeout=3.0)
            if self._thread.is_alive():
                logger.error("EventBus dispatch thread still alive after 3s")
        logger.info("EventBus stopped")

    def _discard_one(self):
        try:
            self._queue.get_nowait()
        except queue.Empty:
            return
        self._queue.task_done()

    def wait_until_idle(self, timeout: float = 1.0) -> bool:
        """Block until every queued event has been dispatched"""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    # ========== Subscriptions ==========

    @staticmethod
    def _key_for(callback: Callable):
        """Bound methods are rebuilt on each attribute access, so key them by (owner, function)"""
        owner = getattr(callback, "__self__", None)
        func = getattr(callback, "__func__", None)
        if owner is not None and func is not None:
            return (id(owner), id(func))
        return id(callback)

    @staticmethod
    def _reference(callback: Callable, weak: bool):
        if not weak:
            return callback
        try:
            if hasattr(callback, "__self__") and hasattr(callback, "__func__"):
                return weakref.WeakMethod(callback)
            return weakref.ref(callback)
        except TypeError:
            # builtins and some callables cannot be weakly referenced
            return callback

    def subscribe(self, event: Events, callback: Callable, weak: bool = True):
        """
        Register callback for event

        Args:
            event: Event to listen for
            callback: Receives {"name": event.value, "data": payload}
            weak: Drop the subscription once the callback is garbage collected
        """
        key = self._key_for(callback)
        with self._lock:
            subs = self._subscriptions.setdefault(event, [])
            for sub in list(subs):
                if sub.key != key:
                    continue
                if sub.resolve() is not None:
                    logger.debug(f"Duplicate subscription to {event.value} ignored")
                    return
                subs.remove(sub)  # dead weakref whose id was reused
            subs.append(_Subscription(key, self._reference(callback, weak)))
        logger.debug(f"Subscribed to {event.value}")

    def unsubscribe(self, event: Events, callback: Callable):
        key = self._key_for(callback)
        with self._lock:
            remaining = [sub for sub in self._subscriptions.get(event, []) if sub.key != key]
            if remaining:
                self._subscriptions[event] = remaining
            else:
                self._subscriptions.pop(event, None)
        logger.debug(f"Unsubscribed from {event.value}")

    def _live_callbacks(self, event: Events) -> list[Callable]:
        """Resolve subscribers, pruning dead ones (caller holds no lock)"""
        with self._lock:
            subs = self._subscriptions.get(event)
            if not subs:
                return []
            alive = [(sub, sub.resolve()) for sub in subs]
            alive = [(sub, cb) for sub, cb in alive if cb is not None]
            if alive:
                self._subscriptions[event] = [sub for sub, _ in alive]
            else:
                self._subscriptions.pop(event, None)
            return [cb for _, cb in alive]

    def has_subscribers(self, event: Events) -> bool:
        return bool(self._live_callbacks(event))

    def clear_all(self):
        with self._lock:
            self._subscriptions.clear()
        logger.debug("All subscriptions cleared")

    # ========== Publishing ==========

    def publish(self, event: Events, data: Any = None):
        """Hand an event to subscribers without blocking the publisher"""
        self._stats["events_published"] += 1

        if self._synchronous:
            self._dispatch(event, data)
            return

        try:
            self._queue.put_nowait((event, data))
        except queue.Full:
            self._stats["events_dropped"] += 1
            logger.warning(f"EventBus queue full, dropped {event.value}")
            return

        limit = self._queue.maxsize
        depth = self._queue.qsize()
        if limit > 0 and depth > limit * self.CAPACITY_WARNING:
            logger.warning(f"EventBus queue at {depth}/{limit}")

    def _drain(self):
        while self._processing:
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                if item is None:
                    break
                self._dispatch(*item)
            except Exception as e:
                logger.error(f"EventBus dispatch failed: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: Events, data: Any):
        envelope = {"name": event.value, "data": data}
        for callback in self._live_callbacks(event):
            try:
                callback(envelope)
                self._stats["events_processed"] += 1
            except Exception as e:
                self._stats["errors"] += 1
                logger.error(f"Subscriber to {event.value} raised: {e}", exc_info=True)

    # ========== Introspection ==========

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            subscriber_count = sum(len(subs) for subs in self._subscriptions.values())
            event_types = len(self._subscriptions)
        return {
            "subscriber_count": subscriber_count,
            "event_types": event_types,
            "queue_size": self._queue.qsize(),
            "processing": self._processing,
            "synchronous": self._synchronous,
            **self._stats,
        }


# Global instance
event_bus = EventBus()
