"""
Enumerations for round states and statuses
"""

from enum import Enum


class RoundStatus(str, Enum):
    """Round lifecycle states"""

    IDLE = "IDLE"
    WAITING = "WAITING"
    FLYING = "FLYING"
    CRASHED = "CRASHED"

    @classmethod
    def accepts_bets(cls, status: str) -> bool:
        """Bets may only be placed while the betting window is open."""
        return status == cls.WAITING

    @classmethod
    def accepts_cashout(cls, status: str) -> bool:
        """Cash-out is only possible while the multiplier is climbing."""
        return status == cls.FLYING


class BetOutcome(str, Enum):
    """Bet lifecycle status"""

    ACTIVE = "active"
    CASHED_OUT = "cashed_out"
    LOST = "lost"


class CommentaryTone(str, Enum):
    """Flavor of an advisory message"""

    NEUTRAL = "neutral"
    HYPE = "hype"
    WARNING = "warning"
    SAD = "sad"
