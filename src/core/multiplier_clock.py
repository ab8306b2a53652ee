"""
Multiplier clock - advances the public multiplier one tick at a time
"""

from dataclasses import dataclass
from decimal import Decimal

from config import config


@dataclass(frozen=True)
class ClockStep:
    """Result of one tick"""

    value: Decimal
    crashed: bool


class MultiplierClock:
    """
    Tiered multiplicative growth: slow below 2x, faster below 5x, fastest
    beyond. Wall-clock pacing is the scheduler's job; this class is pure.
    """

    def __init__(self, growth_tiers=None, tick_interval: float | None = None):
        self.growth_tiers = growth_tiers or config.get("game_rules", "growth_tiers")
        self.tick_interval = tick_interval or config.get("timing", "tick_interval")

    def growth_rate(self, value: Decimal) -> Decimal:
        for bound, rate in self.growth_tiers:
            if bound is None or value < bound:
                return rate
        raise ValueError(f"No growth tier matched {value}")

    def advance(self, previous: Decimal) -> Decimal:
        """next = previous + previous * rate(previous)"""
        return previous + previous * self.growth_rate(previous)

    def step(self, previous: Decimal, crash_point: Decimal) -> ClockStep:
        """
        Advance and detect crash

        The crashed step is clamped to the crash point so the displayed
        value never overshoots.
        """
        nxt = self.advance(previous)
        if nxt >= crash_point:
            return ClockStep(value=crash_point, crashed=True)
        return ClockStep(value=nxt, crashed=False)
