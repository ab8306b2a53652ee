"""
Round and history data models
"""

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from .enums import RoundStatus


@dataclass
class Round:
    """
    One WAITING -> FLYING -> CRASHED cycle

    The crash point stays hidden from presentation until the round crashes.
    """

    round_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    crash_point: Decimal = Decimal("1.0")
    current_multiplier: Decimal = Decimal("1.0")
    status: RoundStatus = RoundStatus.WAITING
    tick_count: int = 0
    started_at: float | None = None
    crashed_at: float | None = None

    @property
    def public_crash_point(self) -> Decimal | None:
        """Crash point once revealed, None while it is still hidden"""
        if self.status == RoundStatus.CRASHED:
            return self.crash_point
        return None


@dataclass(frozen=True)
class HistoryEntry:
    """A past crash point; never modified once appended"""

    crash_point: Decimal
    timestamp: float = field(default_factory=time.time)
    entry_id: str = field(default_factory=lambda: str(int(time.time() * 1000)))

    @property
    def is_high(self) -> bool:
        """Rounds reaching 2x are highlighted by the presentation"""
        return self.crash_point >= 2

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "crash_point": float(self.crash_point),
            "timestamp": self.timestamp,
        }
