"""
Shared test fixtures for pytest
"""

import random
from decimal import Decimal
from unittest.mock import Mock

import pytest

from core import (
    BetLedger,
    HistoryLog,
    ManualScheduler,
    MultiplierClock,
    OpponentPool,
    RoundOutcomeGenerator,
    RoundStateMachine,
)
from models import PlayerSession
from services import setup_logging
from services.commentary import InlineCommentaryService
from services.event_bus import EventBus


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Setup logging for all tests (console only)"""
    setup_logging({"file_logging": False})


@pytest.fixture
def rng():
    """Seeded random source for reproducible draws"""
    return random.Random(1234)


@pytest.fixture
def ledger():
    """Fresh BetLedger with a 1000 balance"""
    return BetLedger(Decimal("1000"), owner_name="Maverick")


@pytest.fixture
def opponent_pool(rng):
    return OpponentPool(rng)


@pytest.fixture
def history_log():
    return HistoryLog()


@pytest.fixture
def scheduler():
    """Virtual-clock scheduler; nothing fires until advanced"""
    return ManualScheduler()


@pytest.fixture
def sync_bus():
    """Event bus that dispatches on the publishing thread"""
    return EventBus(synchronous=True)


@pytest.fixture
def crash_points():
    """Crash points handed out by the fixed generator, in order"""
    return []


@pytest.fixture
def fixed_generator(crash_points):
    """Generator that replays crash_points, then 2.0 forever"""
    generator = Mock(spec=RoundOutcomeGenerator)

    def draw():
        return crash_points.pop(0) if crash_points else Decimal("2.0")

    generator.draw.side_effect = draw
    return generator


@pytest.fixture
def doubling_clock():
    """Clock that doubles each tick: 1 -> 2 -> 4 -> 8"""
    return MultiplierClock(growth_tiers=((None, Decimal("1")),), tick_interval=0.05)


@pytest.fixture
def engine(scheduler, fixed_generator, sync_bus, rng):
    """State machine on a virtual clock with a scripted crash sequence"""
    machine = RoundStateMachine(
        scheduler,
        generator=fixed_generator,
        commentary=InlineCommentaryService(),
        bus=sync_bus,
        rng=rng,
    )
    yield machine
    machine.shutdown()


@pytest.fixture
def doubling_engine(scheduler, fixed_generator, sync_bus, rng, doubling_clock):
    """State machine whose multiplier doubles every tick"""
    machine = RoundStateMachine(
        scheduler,
        generator=fixed_generator,
        clock=doubling_clock,
        commentary=InlineCommentaryService(),
        bus=sync_bus,
        rng=rng,
    )
    yield machine
    machine.shutdown()


@pytest.fixture
def session():
    return PlayerSession(username="Maverick", initialBalance=Decimal("1000"))


@pytest.fixture
def config_overrides():
    """Global config with overrides dropped after the test"""
    from config import config

    yield config
    config.reset_overrides()
