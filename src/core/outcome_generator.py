"""
Crash point generation

Maps a uniform draw through a tiered distribution: an instant-crash floor
followed by three escalating uniform tiers, giving a heavy tail with a house
edge.
"""

import logging
import random
from decimal import ROUND_DOWN, Decimal

from config import config

logger = logging.getLogger(__name__)


def to_decimal(value: float) -> Decimal:
    """Float -> Decimal truncated to financial.decimal_places"""
    quantum = Decimal(1).scaleb(-config.get("financial", "decimal_places"))
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_DOWN)


def crash_point_for(r: float, rng: random.Random, tiers=None) -> Decimal:
    """
    Crash point for a uniform value r in [0, 1)

    Args:
        r: Tier selector
        rng: Source of the in-tier uniform draw (not consumed for a flat tier)
        tiers: (upper_bound, base, span) rows, defaults to config

    Returns:
        Crash point, always >= 1.0
    """
    tiers = tiers or config.get("game_rules", "crash_tiers")
    r = Decimal(str(r))

    for bound, base, span in tiers:
        if bound is None or r < bound:
            if span == 0:
                return base
            offset = to_decimal(rng.random()) * span
            # u < 1 keeps the value inside [base, base + span)
            return max(base + offset, config.get("game_rules", "min_multiplier"))

    raise ValueError(f"No crash tier matched r={r}")


class RoundOutcomeGenerator:
    """
    Draws the hidden crash point for each round

    Usage:
        generator = RoundOutcomeGenerator(random.Random(42))
        crash_point = generator.draw()
    """

    def __init__(self, rng: random.Random | None = None, tiers=None):
        self.rng = rng or random.Random()
        self.tiers = tiers or config.get("game_rules", "crash_tiers")
        self.draws = 0

    def draw(self) -> Decimal:
        """Draw a new crash point"""
        r = self.rng.random()
        crash_point = crash_point_for(r, self.rng, self.tiers)
        self.draws += 1
        logger.debug(f"Crash point drawn: {crash_point} (r={r:.4f})")
        return crash_point
