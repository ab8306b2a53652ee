"""
Tests for RoundStateMachine

All runs use the virtual-clock scheduler, so timing is exact and nothing
sleeps.
"""

from decimal import Decimal
from unittest.mock import Mock

import pytest
from pydantic import ValidationError

from core import OpponentPool, RoundStateMachine, StateEvents
from models import Commentary, CommentaryTone, RoundStatus
from services.commentary import CommentaryService, InlineCommentaryService
from services.event_bus import Events


def run_to(engine, scheduler, status):
    """Fire timers until the engine reaches status"""
    assert scheduler.run_until(lambda: engine.status == status)


def record(engine, event):
    received = []
    engine.subscribe(event, received.append)
    return received


class TestSessionStart:
    """Tests for session establishment"""

    def test_idle_before_session(self, engine, scheduler):
        """No timer runs until a session is started"""
        assert engine.status == RoundStatus.WAITING
        assert engine.session_active is False
        assert engine.timer is None

        scheduler.advance(60)

        assert engine.status == RoundStatus.WAITING

    def test_bet_rejected_before_session(self, engine, session):
        result = engine.place_bet(Decimal("10"))

        assert result["success"] is False
        assert "IDLE" in result["reason"]
        assert engine.ledger.active_bet is None

        engine.start_session(session)

        assert engine.balance == Decimal("1000")
        assert engine.place_bet(Decimal("10"))["success"] is True

    def test_session_sets_balance_and_schedules_flight(self, engine, scheduler, session):
        engine.start_session(session)

        assert engine.session_active is True
        assert engine.balance == Decimal("1000")
        assert engine.ledger.owner_name == "Maverick"

        scheduler.advance(4.5)
        assert engine.status == RoundStatus.WAITING

        scheduler.advance(0.5)
        assert engine.status == RoundStatus.FLYING
        assert engine.multiplier == Decimal("1.0")

    def test_session_from_payload(self, engine):
        session = engine.start_session({"username": "Goose", "initialBalance": 250.5})

        assert session.username == "Goose"
        assert engine.balance == Decimal("250.5")

    def test_invalid_session_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.start_session({"username": "", "initialBalance": 100})
        with pytest.raises(ValidationError):
            engine.start_session({"username": "Goose", "initialBalance": -1})

        assert engine.session_active is False

    def test_restart_resets_loop(self, engine, scheduler, session, fixed_generator):
        """A second start_session cancels the pending flight and starts over"""
        engine.start_session(session)
        scheduler.advance(3)
        engine.start_session(session)

        scheduler.advance(2)
        assert engine.status == RoundStatus.WAITING

        scheduler.advance(3)
        assert engine.status == RoundStatus.FLYING
        assert fixed_generator.draw.call_count == 1

    def test_restart_mid_flight(self, engine, scheduler, session, crash_points):
        crash_points.append(Decimal("10"))
        engine.start_session(session)
        engine.place_bet(Decimal("100"))
        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.advance(0.5)

        engine.start_session(session)
        multiplier = engine.multiplier
        scheduler.advance(1.0)

        assert engine.status == RoundStatus.WAITING
        assert engine.multiplier == multiplier
        assert engine.balance == Decimal("1000")
        assert engine.ledger.active_bet is None


class TestPlayerScenarios:
    """End-to-end betting scenarios"""

    def test_win_scenario(self, doubling_engine, scheduler, session, crash_points):
        """Bet 10, cash out at 2.0x in a 3.0x round"""
        engine = doubling_engine
        crash_points.append(Decimal("3.0"))
        wins = record(engine, StateEvents.BET_WON)
        losses = record(engine, StateEvents.BET_LOST)
        engine.start_session(session)

        assert engine.place_bet(Decimal("10"))["success"] == True
        assert engine.balance == Decimal("990")

        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.run_until(lambda: engine.multiplier == Decimal("2.0"))
        result = engine.cash_out()

        assert result["success"] == True
        assert engine.balance == Decimal("1010")
        assert len(wins) == 1
        assert wins[0].amount == Decimal("20")
        assert wins[0].multiplier == Decimal("2.0")

        run_to(engine, scheduler, RoundStatus.CRASHED)
        assert engine.multiplier == Decimal("3.0")
        assert losses == []
        assert engine.balance == Decimal("1010")

    def test_instant_crash_loss(self, engine, scheduler, session, crash_points):
        """Bet 50 on a 1.0x round loses the stake, reported once"""
        crash_points.append(Decimal("1.0"))
        losses = record(engine, StateEvents.BET_LOST)
        engine.start_session(session)
        engine.place_bet(Decimal("50"))

        run_to(engine, scheduler, RoundStatus.FLYING)
        run_to(engine, scheduler, RoundStatus.CRASHED)

        assert engine.status == RoundStatus.CRASHED
        assert engine.multiplier == Decimal("1.0")
        assert engine.balance == Decimal("950")
        assert len(losses) == 1
        assert losses[0].amount == Decimal("50")

        run_to(engine, scheduler, RoundStatus.WAITING)
        assert len(losses) == 1
        assert engine.balance == Decimal("950")
        assert engine.ledger.active_bet is None

    def test_no_bets_while_flying(self, engine, scheduler, session):
        engine.start_session(session)
        run_to(engine, scheduler, RoundStatus.FLYING)

        result = engine.place_bet(Decimal("10"))

        assert result["success"] == False
        assert engine.balance == Decimal("1000")

    def test_no_cashout_while_waiting_or_crashed(self, engine, scheduler, session, crash_points):
        crash_points.append(Decimal("1.0"))
        engine.start_session(session)
        engine.place_bet(Decimal("10"))

        assert engine.cash_out()["success"] == False

        run_to(engine, scheduler, RoundStatus.CRASHED)
        assert engine.cash_out()["success"] == False
        assert engine.balance == Decimal("990")

    def test_cash_out_once_per_round(self, doubling_engine, scheduler, session, crash_points):
        engine = doubling_engine
        crash_points.append(Decimal("100"))
        engine.start_session(session)
        engine.place_bet(Decimal("10"))
        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.run_until(lambda: engine.multiplier == Decimal("4"))

        engine.cash_out()
        scheduler.run_until(lambda: engine.multiplier == Decimal("8"))

        assert engine.cash_out()["success"] == False
        assert engine.balance == Decimal("1030")

    def test_bet_carries_to_next_round_only_after_clear(self, engine, scheduler, session, crash_points):
        """A new bet is possible once CRASHED -> WAITING has cleared the slot"""
        crash_points.extend([Decimal("1.0"), Decimal("1.0")])
        engine.start_session(session)
        engine.place_bet(Decimal("10"))
        run_to(engine, scheduler, RoundStatus.CRASHED)

        assert engine.ledger.active_bet is not None
        run_to(engine, scheduler, RoundStatus.WAITING)
        assert engine.place_bet(Decimal("10"))["success"] == True
        assert engine.balance == Decimal("980")

    def test_staged_bet_and_potential_payout(self, doubling_engine, scheduler, session, crash_points):
        engine = doubling_engine
        crash_points.append(Decimal("10"))
        engine.start_session(session)
        engine.increase_bet_amount()
        engine.place_bet()

        assert engine.balance == Decimal("980")
        assert engine.potential_payout() is None

        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.run_until(lambda: engine.multiplier == Decimal("2"))

        assert engine.potential_payout() == Decimal("40")

    def test_credit_balance(self, engine, session):
        engine.start_session(session)

        engine.credit_balance(Decimal("500"))

        assert engine.balance == Decimal("1500")


class TestRoundLoop:
    """Tests for the transition cycle and its invariants"""

    def test_full_cycle_timing(self, engine, scheduler, session, crash_points):
        crash_points.append(Decimal("1.0"))
        statuses = record(engine, StateEvents.STATUS_CHANGED)
        engine.start_session(session)

        scheduler.advance(5.0)
        assert engine.status == RoundStatus.FLYING
        scheduler.advance(0.05)
        assert engine.status == RoundStatus.CRASHED
        scheduler.advance(3.9)
        assert engine.status == RoundStatus.CRASHED
        scheduler.advance(0.2)
        assert engine.status == RoundStatus.WAITING

        assert [s.new_status for s in statuses] == [
            RoundStatus.WAITING,
            RoundStatus.FLYING,
            RoundStatus.CRASHED,
            RoundStatus.WAITING,
        ]

    def test_multiplier_monotonic_and_capped(self, engine, scheduler, session, crash_points):
        crash_points.append(Decimal("5.0"))
        ticks = record(engine, StateEvents.MULTIPLIER_CHANGED)
        engine.start_session(session)

        run_to(engine, scheduler, RoundStatus.CRASHED)

        values = [t.multiplier for t in ticks]
        assert values == sorted(values)
        assert values[-1] == Decimal("5.0")
        assert all(v <= Decimal("5.0") for v in values)

    def test_single_live_timer(self, engine, scheduler, session):
        engine.start_session(session)
        assert scheduler.pending() == 1

        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.advance(0)
        assert scheduler.pending() == 1
        assert engine.timer.periodic is True

        run_to(engine, scheduler, RoundStatus.CRASHED)
        scheduler.advance(0)
        assert scheduler.pending() == 1
        assert engine.timer.periodic is False

    def test_stale_timer_ignored(self, engine, scheduler, session, fixed_generator):
        """A handle that fires after being replaced does nothing"""
        engine.start_session(session)
        stale = engine.timer
        engine.start_session(session)

        stale.callback()

        assert engine.status == RoundStatus.WAITING
        fixed_generator.draw.assert_not_called()

    def test_history_updates_and_cap(self, engine, scheduler, session, crash_points):
        crash_points.extend([Decimal("1.0"), Decimal("1.5")])
        engine.start_session(session)

        run_to(engine, scheduler, RoundStatus.CRASHED)
        assert engine.get_snapshot().history == [Decimal("1.0")]

        run_to(engine, scheduler, RoundStatus.WAITING)
        run_to(engine, scheduler, RoundStatus.CRASHED)
        assert engine.get_snapshot().history == [Decimal("1.5"), Decimal("1.0")]

        scheduler.run_until(lambda: engine.state.rounds_played >= 17)
        assert len(engine.get_snapshot().history) == 15

    def test_crash_point_hidden_until_crash(self, engine, scheduler, session, crash_points):
        crash_points.append(Decimal("1.8"))
        engine.start_session(session)
        run_to(engine, scheduler, RoundStatus.FLYING)

        assert engine.get_snapshot().crash_point is None

        run_to(engine, scheduler, RoundStatus.CRASHED)
        assert engine.get_snapshot().crash_point == Decimal("1.8")

    def test_shutdown_cancels_timer(self, engine, scheduler, session):
        engine.start_session(session)
        run_to(engine, scheduler, RoundStatus.FLYING)

        engine.shutdown()
        multiplier = engine.multiplier
        scheduler.advance(30)

        assert engine.status == RoundStatus.FLYING
        assert engine.multiplier == multiplier
        assert engine.timer is None


class TestOpponents:
    """Tests for the opponent pool inside the loop"""

    def test_no_opponent_trial_on_crash_tick(self, scheduler, fixed_generator, sync_bus, rng, crash_points):
        crash_points.append(Decimal("1.0"))
        pool = OpponentPool(rng)
        pool.tick = Mock(wraps=pool.tick)
        engine = RoundStateMachine(
            scheduler,
            generator=fixed_generator,
            opponents=pool,
            commentary=InlineCommentaryService(),
            bus=sync_bus,
        )
        engine.start_session({"username": "Maverick"})

        run_to(engine, scheduler, RoundStatus.CRASHED)

        pool.tick.assert_not_called()
        assert pool.frozen is True

    def test_fresh_pool_each_round(self, engine, scheduler, session, crash_points):
        crash_points.extend([Decimal("1.0"), Decimal("1.0")])
        engine.start_session(session)

        run_to(engine, scheduler, RoundStatus.FLYING)
        first = {o["bet_id"] for o in engine.get_snapshot().opponents}
        run_to(engine, scheduler, RoundStatus.WAITING)
        run_to(engine, scheduler, RoundStatus.FLYING)
        second = {o["bet_id"] for o in engine.get_snapshot().opponents}

        assert len(first) == 8
        assert first.isdisjoint(second)
        assert engine.get_snapshot().online == 132

    def test_opponent_cashouts_below_crash_point(self, engine, scheduler, session, crash_points):
        crash_points.append(Decimal("20"))
        engine.start_session(session)

        run_to(engine, scheduler, RoundStatus.CRASHED)
        snapshot = engine.get_snapshot()
        cashed = [o for o in snapshot.opponents if o["cashed_out"]]

        assert cashed
        assert all(Decimal("1.3") < o["cashout_multiplier"] < Decimal("20") for o in cashed)

        frozen = [dict(o) for o in snapshot.opponents]
        scheduler.advance(3)
        assert engine.get_snapshot().opponents == frozen


class TestBannersAndNotifications:
    """Tests for the win/loss banners and event bus publication"""

    def test_win_banner_cleared_on_return_to_waiting(self, doubling_engine, scheduler, session, crash_points):
        engine = doubling_engine
        crash_points.append(Decimal("3.0"))
        engine.start_session(session)
        engine.place_bet(Decimal("10"))
        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.run_until(lambda: engine.multiplier == Decimal("2.0"))
        engine.cash_out()

        assert engine.get_snapshot().last_win == {"amount": Decimal("20"), "multiplier": Decimal("2.0")}

        run_to(engine, scheduler, RoundStatus.CRASHED)
        run_to(engine, scheduler, RoundStatus.WAITING)
        assert engine.get_snapshot().last_win is None

    def test_loss_banner(self, engine, scheduler, session, crash_points):
        crash_points.append(Decimal("1.0"))
        engine.start_session(session)
        engine.place_bet(Decimal("10"))

        run_to(engine, scheduler, RoundStatus.CRASHED)
        assert engine.get_snapshot().show_loss is True

        run_to(engine, scheduler, RoundStatus.WAITING)
        assert engine.get_snapshot().show_loss is False

    def test_events_published_on_bus(self, engine, scheduler, session, sync_bus, crash_points):
        crash_points.append(Decimal("1.0"))
        received = []

        def handler(event):
            received.append(event)

        for event in (Events.SESSION_STARTED, Events.ROUND_STARTED, Events.ROUND_CRASHED,
                      Events.BET_PLACED, Events.BET_LOST, Events.HISTORY_UPDATED):
            sync_bus.subscribe(event, handler)

        engine.start_session(session)
        engine.place_bet(Decimal("10"))
        run_to(engine, scheduler, RoundStatus.CRASHED)

        names = [event["name"] for event in received]
        assert names == [
            "session.started",
            "bet.placed",
            "round.started",
            "round.crashed",
            "round.history",
            "bet.lost",
        ]
        crashed = received[3]["data"]
        assert crashed.crash_point == Decimal("1.0")


class TestCommentary:
    """Tests for commentary delivery"""

    def test_initial_and_flight_commentary(self, engine, scheduler, session):
        assert engine.get_snapshot().commentary == "Engine warm-up initiated. Prepare for takeoff."

        engine.start_session(session)
        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.advance(0)

        snapshot = engine.get_snapshot()
        assert snapshot.commentary_tone == CommentaryTone.HYPE
        assert snapshot.commentary != "Engine warm-up initiated. Prepare for takeoff."

    def test_provider_failure_falls_back(self, scheduler, fixed_generator, sync_bus, session):
        provider = Mock(side_effect=RuntimeError("advisor offline"))
        engine = RoundStateMachine(
            scheduler,
            generator=fixed_generator,
            commentary=InlineCommentaryService(provider=provider),
            bus=sync_bus,
        )
        engine.start_session(session)
        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.advance(0)

        assert engine.get_snapshot().commentary == "Systems nominal. Keep your eyes on the multiplier."
        assert engine.status == RoundStatus.FLYING

    def test_late_commentary_dropped(self, scheduler, fixed_generator, sync_bus, session, crash_points):
        """A reply for a finished round never overwrites newer state"""
        crash_points.append(Decimal("1.0"))
        pending = []

        class DeferredCommentary(CommentaryService):
            def request(self, status, multiplier, last_crash, on_ready, round_id=None):
                pending.append((self.fetch(status, multiplier, last_crash, round_id), on_ready))

        engine = RoundStateMachine(
            scheduler,
            generator=fixed_generator,
            commentary=DeferredCommentary(provider=lambda *args: "late reply"),
            bus=sync_bus,
        )
        engine.start_session(session)
        run_to(engine, scheduler, RoundStatus.FLYING)
        run_to(engine, scheduler, RoundStatus.WAITING)
        run_to(engine, scheduler, RoundStatus.FLYING)

        commentary, on_ready = pending[0]
        on_ready(commentary)
        scheduler.advance(0)

        assert engine.get_snapshot().commentary != "late reply"

    def test_commentary_event(self, engine, scheduler, session):
        updates = record(engine, StateEvents.COMMENTARY_CHANGED)
        engine.start_session(session)
        run_to(engine, scheduler, RoundStatus.FLYING)
        scheduler.advance(0)

        assert len(updates) == 1
        assert isinstance(updates[0], Commentary)
        assert updates[0].round_id == engine.get_snapshot().round_id


class TestWiring:
    """Tests for collaborators the engine builds itself"""

    def test_default_bus_delivers_inline(self, scheduler, fixed_generator, session, crash_points):
        crash_points.extend([Decimal("1.5")] * 3)
        machine = RoundStateMachine(
            scheduler, generator=fixed_generator, commentary=InlineCommentaryService()
        )
        crashes = []
        machine.bus.subscribe(Events.ROUND_CRASHED, crashes.append)
        try:
            machine.start_session(session)
            for _ in range(3):
                run_to(machine, scheduler, RoundStatus.FLYING)
                run_to(machine, scheduler, RoundStatus.CRASHED)

            stats = machine.bus.get_stats()
            assert machine.bus.synchronous is True
            assert len(crashes) == 3
            assert stats["events_dropped"] == 0
            assert stats["queue_size"] == 0
        finally:
            machine.shutdown()

    def test_config_overrides_reach_engine(
        self, config_overrides, scheduler, fixed_generator, sync_bus, session, crash_points
    ):
        config_overrides.set("timing", "tick_interval", 0.1)
        config_overrides.set("timing", "waiting_delay", 1.0)
        config_overrides.set("memory", "max_history", 5)
        config_overrides.set("opponents", "pool_size", 2)
        crash_points.extend([Decimal("1.01")] * 6)
        machine = RoundStateMachine(
            scheduler, generator=fixed_generator, commentary=InlineCommentaryService(), bus=sync_bus
        )
        try:
            machine.start_session(session)
            scheduler.advance(1.0)

            assert machine.status == RoundStatus.FLYING
            assert machine.timer.interval == 0.1
            assert len(machine.get_snapshot().opponents) == 2

            for _ in range(6):
                run_to(machine, scheduler, RoundStatus.CRASHED)
                run_to(machine, scheduler, RoundStatus.FLYING)

            assert len(machine.get_snapshot().history) == 5
        finally:
            machine.shutdown()
