"""
Round State Machine

Drives the repeating round cycle and owns every timer.

State Machine:
    WAITING --(waiting delay)--> FLYING --(crash point reached)--> CRASHED
       ^                                                              |
       +-----------------------(crash delay)-------------------------+

States:
- WAITING: Betting window open, no clock running
- FLYING: Multiplier ticking, cash-out open, no new bets
- CRASHED: Round over, settlement done, results on display

Exactly one timer handle is live at a time. Each transition bumps a
generation counter and cancels the previous handle, so a callback that
fires after its state has been left is recognised as stale and ignored.
"""

import logging
import random
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from config import config
from models import (
    BetEvent,
    Commentary,
    CommentaryTone,
    HistoryUpdated,
    MultiplierTick,
    OpponentsUpdated,
    PlayerSession,
    Round,
    RoundStatus,
    RoundStatusChanged,
)
from services.commentary import CommentaryService
from services.event_bus import EventBus, Events
from services.logger import RoundContextFilter

from .bet_ledger import BetLedger
from .history_log import HistoryLog
from .multiplier_clock import MultiplierClock
from .observers import ObserverRegistry, StateEvents
from .opponent_pool import OpponentPool
from .outcome_generator import RoundOutcomeGenerator
from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

_STATUS_EVENTS = {
    RoundStatus.WAITING: Events.ROUND_WAITING,
    RoundStatus.FLYING: Events.ROUND_STARTED,
    RoundStatus.CRASHED: Events.ROUND_CRASHED,
}

# Ledger notifications forwarded verbatim to the event bus
_LEDGER_EVENTS = {
    StateEvents.BALANCE_CHANGED: Events.BALANCE_CHANGED,
    StateEvents.BET_PLACED: Events.BET_PLACED,
    StateEvents.BET_WON: Events.BET_CASHED_OUT,
    StateEvents.BET_LOST: Events.BET_LOST,
    StateEvents.BET_CLEARED: Events.BET_CLEARED,
}


@dataclass
class RoundState:
    """Mutable state shared by every scheduler callback; owned by the state machine"""

    round: Round
    ledger: BetLedger
    opponents: OpponentPool
    history: HistoryLog
    commentary: Commentary
    session: PlayerSession | None = None
    last_win: BetEvent | None = None
    show_loss: bool = False
    rounds_played: int = 0


@dataclass(frozen=True)
class EngineSnapshot:
    """Immutable view of the engine for a presentation layer"""

    status: RoundStatus
    round_id: str
    multiplier: Decimal
    crash_point: Decimal | None
    balance: Decimal
    bet: dict | None
    bet_amount: Decimal
    potential_payout: Decimal | None
    opponents: list[dict]
    online: int
    history: list[Decimal]
    last_win: dict | None
    show_loss: bool
    commentary: str
    commentary_tone: CommentaryTone
    session_active: bool
    username: str | None
    rounds_played: int
    metadata: dict[str, Any] = field(default_factory=dict)


class RoundStateMachine:
    """
    Orchestrates outcome generation, the multiplier clock, the bet ledger,
    the opponent pool and the history log into the round loop.

    Usage:
        scheduler = ThreadedScheduler()
        scheduler.start()
        engine = RoundStateMachine(scheduler)
        engine.subscribe(StateEvents.BET_WON, lambda e: print(e.amount))
        engine.start_session(PlayerSession(username="Maverick", initialBalance=1000))
        engine.place_bet(Decimal("10"))
        ...
        engine.cash_out()
        engine.shutdown()
    """

    def __init__(
        self,
        scheduler: Scheduler,
        generator: RoundOutcomeGenerator | None = None,
        clock: MultiplierClock | None = None,
        opponents: OpponentPool | None = None,
        history: HistoryLog | None = None,
        commentary: CommentaryService | None = None,
        bus: EventBus | None = None,
        rng: random.Random | None = None,
    ):
        rng = rng or random.Random()
        self.scheduler = scheduler
        self.generator = generator or RoundOutcomeGenerator(rng)
        self.clock = clock or MultiplierClock()
        self.commentary_service = commentary or CommentaryService()
        # Without a caller-supplied (and started) bus, deliver inline so nothing queues unread
        self.bus = bus if bus is not None else EventBus(synchronous=True)
        self.observers = ObserverRegistry()

        timing = config.section("timing")
        self.tick_interval = self.clock.tick_interval
        self.waiting_delay = timing["waiting_delay"]
        self.crash_delay = timing["crash_delay"]

        self._state = RoundState(
            round=Round(status=RoundStatus.WAITING),
            ledger=BetLedger(observers=self.observers),
            opponents=opponents or OpponentPool(rng),
            history=history or HistoryLog(),
            commentary=Commentary(text=config.get("commentary", "initial_text")),
        )

        self._lock = threading.RLock()
        self._timer: TimerHandle | None = None
        self._generation = 0

        for state_event, bus_event in _LEDGER_EVENTS.items():
            self.observers.subscribe(state_event, self._forwarder(bus_event))
        self.observers.subscribe(StateEvents.BET_WON, self._on_bet_won)
        self.observers.subscribe(StateEvents.BET_LOST, self._on_bet_lost)

        logger.info("RoundStateMachine initialized")

    # ========================================================================
    # STATE ACCESS
    # ========================================================================

    @property
    def state(self) -> RoundState:
        return self._state

    @property
    def ledger(self) -> BetLedger:
        return self._state.ledger

    @property
    def status(self) -> RoundStatus:
        with self._lock:
            return self._state.round.status

    @property
    def multiplier(self) -> Decimal:
        with self._lock:
            return self._state.round.current_multiplier

    @property
    def balance(self) -> Decimal:
        return self._state.ledger.balance

    @property
    def session_active(self) -> bool:
        with self._lock:
            return self._state.session is not None

    @property
    def timer(self) -> TimerHandle | None:
        """Handle of the single live timer, if any"""
        return self._timer

    def subscribe(self, event: StateEvents, callback: Callable):
        self.observers.subscribe(event, callback)

    def unsubscribe(self, event: StateEvents, callback: Callable):
        self.observers.unsubscribe(event, callback)

    def potential_payout(self) -> Decimal | None:
        with self._lock:
            rnd = self._state.round
            return self._state.ledger.potential_payout(rnd.status, rnd.current_multiplier)

    def get_snapshot(self) -> EngineSnapshot:
        """Get immutable snapshot of current state"""
        with self._lock:
            state = self._state
            rnd = state.round
            bet = state.ledger.active_bet
            return EngineSnapshot(
                status=rnd.status,
                round_id=rnd.round_id,
                multiplier=rnd.current_multiplier,
                crash_point=rnd.public_crash_point,
                balance=state.ledger.balance,
                bet=bet.to_dict(preserve_precision=True) if bet else None,
                bet_amount=state.ledger.bet_amount,
                potential_payout=state.ledger.potential_payout(rnd.status, rnd.current_multiplier),
                opponents=[view.model_dump() for view in state.opponents.views()],
                online=state.opponents.online,
                history=state.history.crash_points(),
                last_win=(
                    {"amount": state.last_win.amount, "multiplier": state.last_win.multiplier}
                    if state.last_win
                    else None
                ),
                show_loss=state.show_loss,
                commentary=state.commentary.text,
                commentary_tone=state.commentary.tone,
                session_active=state.session is not None,
                username=state.session.username if state.session else None,
                rounds_played=state.rounds_played,
                metadata={"tick": rnd.tick_count, "generation": self._generation},
            )

    # ========================================================================
    # SESSION
    # ========================================================================

    def start_session(self, session: PlayerSession | dict) -> PlayerSession:
        """
        Establish the player session and start the round loop

        Calling this again while a loop is running resets it: the pending
        timer is cancelled and the cycle restarts from WAITING.
        """
        if not isinstance(session, PlayerSession):
            session = PlayerSession.model_validate(session)

        with self._lock:
            restarting = self._state.session is not None
            old_status = self._state.round.status
            self._cancel_timer()

            state = self._state
            state.session = session
            state.ledger.reset(session.initial_balance, owner_name=session.username)
            state.opponents.freeze()
            state.rounds_played = 0
            state.last_win = None
            state.show_loss = False
            state.round = Round(status=RoundStatus.WAITING)

            self._emit(StateEvents.SESSION_STARTED, session, Events.SESSION_STARTED)
            logger.info(
                f"Session {'reset' if restarting else 'started'} for {session.username} "
                f"(balance {session.initial_balance})"
            )
            self._enter_waiting(old_status)

        return session

    def shutdown(self):
        """Cancel the live timer and stop commentary workers"""
        with self._lock:
            self._cancel_timer()
        self.commentary_service.shutdown()
        logger.info("RoundStateMachine shut down")

    # ========================================================================
    # PLAYER ACTIONS
    # ========================================================================

    def place_bet(self, amount: Decimal | None = None) -> dict[str, Any]:
        """Place a bet for the upcoming round (uses the staged amount if None)"""
        with self._lock:
            return self._state.ledger.place(amount, self._player_status())

    def cash_out(self) -> dict[str, Any]:
        """Cash out the active bet at the current multiplier"""
        with self._lock:
            rnd = self._state.round
            return self._state.ledger.cash_out(self._player_status(), rnd.current_multiplier)

    def _player_status(self) -> RoundStatus:
        """Round status as seen by player actions; IDLE until a session exists"""
        if self._state.session is None:
            return RoundStatus.IDLE
        return self._state.round.status

    def credit_balance(self, amount: Decimal) -> dict[str, Any]:
        """Entry point for external top-ups"""
        with self._lock:
            return self._state.ledger.credit_balance(amount)

    def set_bet_amount(self, amount: Decimal) -> Decimal:
        return self._state.ledger.set_bet_amount(amount)

    def increase_bet_amount(self) -> Decimal:
        return self._state.ledger.increase_bet_amount()

    def decrease_bet_amount(self) -> Decimal:
        return self._state.ledger.decrease_bet_amount()

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def _enter_waiting(self, old_status: RoundStatus):
        """WAITING: betting open, next round scheduled after the waiting delay"""
        rnd = self._state.round
        rnd.status = RoundStatus.WAITING
        self._emit_status(old_status, RoundStatus.WAITING)
        self._set_timer(
            lambda gen: self.scheduler.schedule_once(
                self.waiting_delay, self._guarded(gen, self._start_round)
            )
        )

    def _start_round(self):
        """WAITING -> FLYING"""
        state = self._state
        crash_point = self.generator.draw()
        state.round = Round(
            crash_point=crash_point,
            status=RoundStatus.FLYING,
            started_at=self.scheduler.now(),
        )
        state.last_win = None
        state.show_loss = False
        state.opponents.regenerate()

        RoundContextFilter.set_round(state.round.round_id)
        logger.info(f"Round {state.round.round_id} started")
        logger.debug(f"Round {state.round.round_id} crash point {crash_point}")

        self._emit(StateEvents.BANNERS_CLEARED, None, Events.BANNERS_CLEARED)
        self._emit_status(RoundStatus.WAITING, RoundStatus.FLYING)
        self._emit_opponents()
        self._request_commentary(RoundStatus.FLYING, Decimal("1.0"), None)
        self._set_timer(
            lambda gen: self.scheduler.schedule_every(
                self.tick_interval, self._guarded(gen, self._on_tick)
            )
        )

    def _on_tick(self):
        """FLYING -> FLYING, or FLYING -> CRASHED when the crash point is reached"""
        rnd = self._state.round
        step = self.clock.step(rnd.current_multiplier, rnd.crash_point)
        rnd.tick_count += 1

        # Crash is evaluated before any opponent trial on this tick
        if step.crashed:
            self._crash()
            return

        rnd.current_multiplier = step.value
        self._emit(
            StateEvents.MULTIPLIER_CHANGED,
            MultiplierTick(round_id=rnd.round_id, tick=rnd.tick_count, multiplier=step.value),
            Events.MULTIPLIER_TICK,
        )

        if self._state.opponents.tick(step.value):
            self._emit_opponents()

    def _crash(self):
        """FLYING -> CRASHED"""
        self._cancel_timer()

        state = self._state
        rnd = state.round
        rnd.current_multiplier = rnd.crash_point
        rnd.status = RoundStatus.CRASHED
        rnd.crashed_at = self.scheduler.now()
        state.opponents.freeze()
        state.history.append(rnd.crash_point)
        state.rounds_played += 1

        logger.info(f"Round {rnd.round_id} crashed at {rnd.crash_point}x after {rnd.tick_count} ticks")

        self._emit(
            StateEvents.MULTIPLIER_CHANGED,
            MultiplierTick(round_id=rnd.round_id, tick=rnd.tick_count, multiplier=rnd.crash_point),
            Events.MULTIPLIER_TICK,
        )
        self._emit_status(RoundStatus.FLYING, RoundStatus.CRASHED)
        self._emit(
            StateEvents.HISTORY_CHANGED,
            HistoryUpdated(crash_points=state.history.crash_points()),
            Events.HISTORY_UPDATED,
        )

        state.ledger.settle_on_crash()
        self._request_commentary(RoundStatus.CRASHED, rnd.crash_point, rnd.crash_point)
        self._set_timer(
            lambda gen: self.scheduler.schedule_once(
                self.crash_delay, self._guarded(gen, self._finish_round)
            )
        )

    def _finish_round(self):
        """CRASHED -> WAITING"""
        state = self._state
        state.ledger.clear_for_next_round()
        RoundContextFilter.set_round(None)
        state.last_win = None
        state.show_loss = False
        self._emit(StateEvents.BANNERS_CLEARED, None, Events.BANNERS_CLEARED)
        self._enter_waiting(RoundStatus.CRASHED)

    # ========================================================================
    # TIMERS
    # ========================================================================

    def _set_timer(self, schedule: Callable[[int], TimerHandle]):
        """Replace the live timer; schedule receives the new generation"""
        self._cancel_timer()
        self._timer = schedule(self._generation)

    def _cancel_timer(self):
        self._generation += 1
        if self._timer is not None:
            self.scheduler.cancel(self._timer)
            self._timer = None

    def _guarded(self, generation: int, handler: Callable[[], None]) -> Callable[[], None]:
        """Wrap a handler so it only runs while its generation is current"""

        def callback():
            with self._lock:
                if generation != self._generation:
                    logger.debug(f"Stale timer ignored ({handler.__name__}, gen {generation})")
                    return
                handler()

        return callback

    # ========================================================================
    # COMMENTARY
    # ========================================================================

    def _request_commentary(self, status: RoundStatus, multiplier: Decimal, last_crash):
        round_id = self._state.round.round_id

        def on_ready(commentary: Commentary):
            # Provider threads hand results back to the scheduler thread
            self.scheduler.schedule_once(0, lambda: self._apply_commentary(commentary))

        self.commentary_service.request(status, multiplier, last_crash, on_ready, round_id=round_id)

    def _apply_commentary(self, commentary: Commentary):
        with self._lock:
            if commentary.round_id != self._state.round.round_id:
                logger.debug(f"Dropping stale commentary for round {commentary.round_id}")
                return
            self._state.commentary = commentary
            self._emit(StateEvents.COMMENTARY_CHANGED, commentary, Events.COMMENTARY_UPDATED)

    # ========================================================================
    # NOTIFICATIONS
    # ========================================================================

    def _on_bet_won(self, event: BetEvent):
        self._state.last_win = event

    def _on_bet_lost(self, event: BetEvent):
        self._state.show_loss = True

    def _forwarder(self, bus_event: Events) -> Callable[[Any], None]:
        def forward(payload):
            self.bus.publish(bus_event, payload)

        return forward

    def _emit(self, state_event: StateEvents, payload: Any, bus_event: Events | None = None):
        self.observers.emit(state_event, payload)
        if bus_event is not None:
            self.bus.publish(bus_event, payload)

    def _emit_status(self, old: RoundStatus, new: RoundStatus):
        rnd = self._state.round
        payload = RoundStatusChanged(
            round_id=rnd.round_id,
            old_status=old,
            new_status=new,
            multiplier=rnd.current_multiplier,
            crash_point=rnd.public_crash_point,
        )
        logger.debug(f"Round state: {old.value} -> {new.value}")
        self._emit(StateEvents.STATUS_CHANGED, payload, _STATUS_EVENTS[new])

    def _emit_opponents(self):
        opponents = self._state.opponents
        self._emit(
            StateEvents.OPPONENTS_CHANGED,
            OpponentsUpdated(
                round_id=self._state.round.round_id,
                opponents=opponents.views(),
                online=opponents.online,
            ),
            Events.OPPONENTS_UPDATED,
        )
