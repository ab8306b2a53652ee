"""Core module - Round loop and betting logic"""

from . import validators
from .bet_ledger import BetLedger
from .history_log import HistoryLog
from .multiplier_clock import ClockStep, MultiplierClock
from .observers import ObserverRegistry, StateEvents
from .opponent_pool import OpponentPool
from .outcome_generator import RoundOutcomeGenerator, crash_point_for
from .round_state_machine import EngineSnapshot, RoundState, RoundStateMachine
from .scheduler import ManualScheduler, Scheduler, ThreadedScheduler, TimerHandle
from .validators import (
    validate_bet_amount,
    validate_cash_out,
    validate_place,
)

__all__ = [
    "BetLedger",
    "ClockStep",
    "EngineSnapshot",
    "HistoryLog",
    "ManualScheduler",
    "MultiplierClock",
    "ObserverRegistry",
    "OpponentPool",
    "RoundOutcomeGenerator",
    "RoundState",
    "RoundStateMachine",
    "Scheduler",
    "StateEvents",
    "ThreadedScheduler",
    "TimerHandle",
    "crash_point_for",
    "validate_bet_amount",
    "validate_cash_out",
    "validate_place",
    "validators",
]
