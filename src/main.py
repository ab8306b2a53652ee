"""
Main Entry Point for the Skybound round engine
Headless runner: plays the round loop with an optional auto-betting player
"""

__version__ = "1.0.0"

import argparse
import logging
import random
import signal
import sys
import threading
from decimal import Decimal, InvalidOperation

from config import ConfigError, config
from core import ManualScheduler, RoundStateMachine, StateEvents, ThreadedScheduler
from models import PlayerSession, RoundStatus
from services.commentary import CommentaryService, InlineCommentaryService
from services.event_bus import EventBus, Events, event_bus
from services.logger import PerformanceLogger, cleanup_logging, get_logger, setup_logging


class Application:
    """
    Main application controller
    Wires the scheduler, event bus and state machine and manages lifecycle
    """

    def __init__(self, args: argparse.Namespace):
        self._initialized_components = []
        self.args = args
        self.rounds_target = args.rounds
        self.rounds_played = 0
        self.auto_cashout = args.auto_cashout
        self.finished = threading.Event()

        try:
            # Initialize logging first
            setup_logging({"console_level": args.log_level, "file_logging": not args.fast}, force=True)
            self.logger = get_logger(__name__)
            self._initialized_components.append("logging")
            self.logger.info("=" * 60)
            self.logger.info("Skybound - Starting Engine")
            self.logger.info(f"MODE: {'FAST (virtual clock)' if args.fast else 'REAL TIME'}")
            self.logger.info("=" * 60)

            if args.config:
                config.load_from_file(args.config)

            try:
                config.validate()
                self.logger.info("Configuration validated successfully")
            except ConfigError as e:
                self.logger.critical(f"Configuration validation failed: {e}")
                raise

            rng = random.Random(args.seed)
            if args.fast:
                self.scheduler = ManualScheduler()
                self.event_bus = EventBus(synchronous=True)
                commentary = InlineCommentaryService()
            else:
                self.scheduler = ThreadedScheduler()
                self.event_bus = event_bus
                commentary = CommentaryService()

            self.event_bus.start()
            self._initialized_components.append("event_bus")

            self.engine = RoundStateMachine(
                self.scheduler, commentary=commentary, bus=self.event_bus, rng=rng
            )
            self._initialized_components.append("engine")

            self._setup_event_handlers()

            if args.bet is not None:
                self.engine.set_bet_amount(args.bet)

            self.logger.info("Application initialized successfully")
        except Exception:
            self._emergency_cleanup()
            raise

    def _emergency_cleanup(self):
        """Clean up partially initialized components"""
        for component in reversed(self._initialized_components):
            try:
                if component == "engine":
                    self.engine.shutdown()
                elif component == "event_bus":
                    self.event_bus.stop()
                elif component == "logging":
                    cleanup_logging()
            except Exception as e:
                print(f"Cleanup of {component} failed: {e}", file=sys.stderr)

    def _setup_event_handlers(self):
        """Auto-player on the synchronous observers, reporting on the bus"""
        self.engine.subscribe(StateEvents.STATUS_CHANGED, self._handle_status)
        self.engine.subscribe(StateEvents.MULTIPLIER_CHANGED, self._handle_tick)

        self.event_bus.subscribe(Events.BET_CASHED_OUT, self._handle_win)
        self.event_bus.subscribe(Events.BET_LOST, self._handle_loss)
        self.event_bus.subscribe(Events.ROUND_CRASHED, self._handle_crash)
        self.event_bus.subscribe(Events.COMMENTARY_UPDATED, self._handle_commentary)

        self.logger.debug("Event handlers configured")

    def _handle_status(self, event):
        if event.new_status != RoundStatus.WAITING or self.args.no_bet:
            return
        if self.rounds_played >= self.rounds_target:
            return
        result = self.engine.place_bet()
        if not result["success"]:
            self.logger.warning(f"Bet skipped: {result['reason']}")

    def _handle_tick(self, event):
        if self.auto_cashout is None or event.multiplier < self.auto_cashout:
            return
        if self.engine.potential_payout() is not None:
            self.engine.cash_out()

    def _handle_win(self, event):
        data = event["data"]
        self.logger.info(f"WIN {data.amount} at {data.multiplier}x (balance {data.balance})")

    def _handle_loss(self, event):
        data = event["data"]
        self.logger.info(f"LOSS {data.amount} (balance {data.balance})")

    def _handle_crash(self, event):
        data = event["data"]
        self.rounds_played += 1
        self.logger.info(
            f"Round {self.rounds_played}/{self.rounds_target} crashed at {data.crash_point}x"
        )
        if self.rounds_played >= self.rounds_target:
            self.finished.set()

    def _handle_commentary(self, event):
        self.logger.info(f"[commentary] {event['data'].text}")

    def run(self) -> int:
        """Run until the requested number of rounds has crashed"""
        session = PlayerSession(username=self.args.username, initial_balance=self.args.balance)

        with PerformanceLogger(self.logger, f"{self.rounds_target} rounds"):
            if self.args.fast:
                self.engine.start_session(session)
                self.scheduler.run_until(self.finished.is_set)
            else:
                self.scheduler.start()
                self._initialized_components.append("scheduler")
                self.engine.start_session(session)
                while not self.finished.wait(timeout=0.5):
                    pass

        snapshot = self.engine.get_snapshot()
        stats = self.engine.ledger.get_stats()
        self.logger.info(f"History: {', '.join(f'{p:.2f}x' for p in snapshot.history)}")
        self.logger.info(
            f"Final balance {snapshot.balance} after {snapshot.rounds_played} rounds "
            f"(won {stats['bets_won']}, lost {stats['bets_lost']}, peak {stats['peak_balance']})"
        )
        for entry in self.engine.ledger.get_transaction_log(limit=5):
            self.logger.debug(f"Ledger: {entry['reason']} {entry['amount']} -> {entry['new_balance']}")
        return 0

    def shutdown(self):
        """Clean shutdown of application"""
        self.logger.info("Shutting down application...")
        try:
            self.engine.shutdown()
            if isinstance(self.scheduler, ThreadedScheduler):
                self.scheduler.stop()
            self.event_bus.stop()
        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}")
        finally:
            self.logger.info("Application shutdown complete")
            cleanup_logging()


def _decimal_arg(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from e
    if not amount.is_finite() or amount < 0:
        raise argparse.ArgumentTypeError(f"must be a non-negative number: {value}")
    return amount


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Skybound crash-game round engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --fast --rounds 20 --seed 7        # Simulate 20 rounds instantly
  %(prog)s --bet 25 --auto-cashout 1.8        # Real-time play with auto cash-out
        """,
    )
    parser.add_argument("--username", default="Pilot", help="Player display name")
    parser.add_argument(
        "--balance",
        type=_decimal_arg,
        default=config.get("financial", "initial_balance"),
        help="Starting balance",
    )
    parser.add_argument("--bet", type=_decimal_arg, default=None, help="Stake per round")
    parser.add_argument("--no-bet", action="store_true", help="Watch without betting")
    parser.add_argument(
        "--auto-cashout",
        type=_decimal_arg,
        default=None,
        help="Cash out automatically once the multiplier reaches this value",
    )
    parser.add_argument("--rounds", type=int, default=5, help="Rounds to play before exiting")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible runs")
    parser.add_argument("--fast", action="store_true", help="Run on a virtual clock")
    parser.add_argument("--config", default=None, help="JSON file with config overrides")
    parser.add_argument(
        "--log-level",
        default=config.get("logging", "level"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    return parser


def main(argv=None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    if args.rounds < 1:
        print("--rounds must be at least 1", file=sys.stderr)
        return 2

    app = None
    try:
        app = Application(args)
        if not args.fast:
            signal.signal(signal.SIGTERM, lambda signum, frame: app.finished.set())
        return app.run()
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except ConfigError as e:
        print(f"FATAL ERROR: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logging.critical(f"Unhandled exception: {e}", exc_info=True)
        return 1
    finally:
        if app is not None:
            app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
