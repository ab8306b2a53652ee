"""
Synchronous observer registry shared by the ledger and the round loop
"""

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class StateEvents(Enum):
    """Events that can be emitted by engine state changes"""

    SESSION_STARTED = "session_started"
    STATUS_CHANGED = "status_changed"
    MULTIPLIER_CHANGED = "multiplier_changed"
    BALANCE_CHANGED = "balance_changed"
    BET_PLACED = "bet_placed"
    BET_WON = "bet_won"
    BET_LOST = "bet_lost"
    BET_CLEARED = "bet_cleared"
    OPPONENTS_CHANGED = "opponents_changed"
    HISTORY_CHANGED = "history_changed"
    BANNERS_CLEARED = "banners_cleared"
    COMMENTARY_CHANGED = "commentary_changed"


class ObserverRegistry:
    """
    Callback lists keyed by StateEvents

    Callbacks run on the emitting thread, outside the registry lock. A
    failing observer is logged and never interrupts the emitter.
    """

    def __init__(self):
        self._observers: dict[StateEvents, list[Callable]] = defaultdict(list)
        self._lock = threading.RLock()

    def subscribe(self, event: StateEvents, callback: Callable):
        """Subscribe to state change events"""
        with self._lock:
            if callback not in self._observers[event]:
                self._observers[event].append(callback)
                logger.debug(f"Subscribed to {event.value}")

    def unsubscribe(self, event: StateEvents, callback: Callable):
        """Unsubscribe from state change events"""
        with self._lock:
            if callback in self._observers[event]:
                self._observers[event].remove(callback)
                logger.debug(f"Unsubscribed from {event.value}")

    def emit(self, event: StateEvents, data: Any = None):
        """Emit an event to all subscribers (releases lock before calling callbacks)"""
        with self._lock:
            callbacks = list(self._observers[event])

        for callback in callbacks:
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Observer callback error for {event.value}: {e}", exc_info=True)

    def clear(self):
        with self._lock:
            self._observers.clear()
