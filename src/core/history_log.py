"""
Bounded record of recent crash points
"""

from collections import deque
from decimal import Decimal

from config import config
from models import HistoryEntry


class HistoryLog:
    """Most-recent-first, oldest evicted on overflow"""

    def __init__(self, max_size: int | None = None):
        self.max_size = max_size or config.get("memory", "max_history")
        self._entries: deque[HistoryEntry] = deque(maxlen=self.max_size)

    def append(self, crash_point: Decimal, timestamp: float | None = None) -> HistoryEntry:
        if timestamp is None:
            entry = HistoryEntry(crash_point=crash_point)
        else:
            entry = HistoryEntry(
                crash_point=crash_point,
                timestamp=timestamp,
                entry_id=str(int(timestamp * 1000)),
            )
        # appendleft on a bounded deque drops from the right (oldest)
        self._entries.appendleft(entry)
        return entry

    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def crash_points(self) -> list[Decimal]:
        return [entry.crash_point for entry in self._entries]

    @property
    def last(self) -> HistoryEntry | None:
        return self._entries[0] if self._entries else None

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> HistoryEntry:
        return self._entries[index]
