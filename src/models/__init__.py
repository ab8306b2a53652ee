"""
Data models for the Skybound round engine
"""

from .bet import Bet
from .enums import BetOutcome, CommentaryTone, RoundStatus
from .events import (
    BalanceChanged,
    BetEvent,
    Commentary,
    HistoryUpdated,
    MultiplierTick,
    OpponentsUpdated,
    OpponentView,
    PlayerSession,
    RoundStatusChanged,
)
from .round import HistoryEntry, Round

__all__ = [
    "BetOutcome",
    "CommentaryTone",
    "RoundStatus",
    "Bet",
    "HistoryEntry",
    "Round",
    # Event payloads
    "BalanceChanged",
    "BetEvent",
    "Commentary",
    "HistoryUpdated",
    "MultiplierTick",
    "OpponentView",
    "OpponentsUpdated",
    "PlayerSession",
    "RoundStatusChanged",
]
