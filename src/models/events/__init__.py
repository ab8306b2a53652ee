"""
Event Models Module - Pydantic schemas for engine notifications
"""

from .commentary import Commentary
from .player_session import PlayerSession
from .round_events import (
    BalanceChanged,
    BetEvent,
    HistoryUpdated,
    MultiplierTick,
    OpponentsUpdated,
    OpponentView,
    RoundStatusChanged,
)

__all__ = [
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
