"""
Commentary Service - advisory flavor text for the round loop

The provider is an external black box: (status, multiplier, last_crash) ->
text. It may be slow or fail, so calls run on a worker pool and the result
comes back through a callback. Any failure degrades to a fixed fallback
message; the round loop is never blocked or interrupted.
"""

import logging
import random
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import Decimal

from config import config
from models import Commentary, CommentaryTone, RoundStatus

logger = logging.getLogger(__name__)

CommentaryProvider = Callable[[RoundStatus, Decimal, Decimal | None], str]


def tone_for(status: RoundStatus, multiplier: Decimal) -> CommentaryTone:
    """Display tone for a message about this round state"""
    if status == RoundStatus.CRASHED:
        return CommentaryTone.SAD if multiplier < 2 else CommentaryTone.WARNING
    if status == RoundStatus.FLYING:
        return CommentaryTone.HYPE
    return CommentaryTone.NEUTRAL


class TemplateCommentaryProvider:
    """Local provider that picks canned lines; used when no remote advisor is wired in"""

    LINES = {
        RoundStatus.FLYING: (
            "Wheels up! Who has the nerve to ride this one?",
            "Engines roaring. Cash out before the clouds swallow you.",
            "Climbing fast. Greed is heavier than fuel.",
        ),
        RoundStatus.CRASHED: (
            "Flew away at {crash:.2f}x. The sky keeps its secrets.",
            "Gone at {crash:.2f}x. Only the quick got paid.",
            "{crash:.2f}x and out of sight. Better luck next flight.",
        ),
        RoundStatus.WAITING: (
            "Boarding open. Place your bets.",
        ),
    }

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def __call__(
        self, status: RoundStatus, multiplier: Decimal, last_crash: Decimal | None = None
    ) -> str:
        lines = self.LINES.get(RoundStatus(status), self.LINES[RoundStatus.WAITING])
        crash = float(last_crash if last_crash is not None else multiplier)
        return self.rng.choice(lines).format(crash=crash, multiplier=float(multiplier))


class CommentaryService:
    """
    Runs the provider off the engine thread

    Each request is answered exactly once: by the provider's text, or by the
    fallback if the provider fails or has not answered within `timeout`
    seconds. Workers stuck in a hung provider are abandoned once they fill
    the pool, so later requests still get a worker.

    Usage:
        service = CommentaryService(provider)
        service.request(RoundStatus.FLYING, Decimal("1.0"), None, on_ready, round_id="abc")
        ...
        service.shutdown()
    """

    def __init__(
        self,
        provider: CommentaryProvider | None = None,
        fallback_text: str | None = None,
        executor: ThreadPoolExecutor | None = None,
        timeout: float | None = None,
    ):
        self.provider = provider or TemplateCommentaryProvider()
        self.fallback_text = fallback_text or config.get("commentary", "fallback_text")
        self.timeout = timeout if timeout is not None else config.get("commentary", "timeout")
        self.max_workers = config.get("commentary", "max_workers")
        self._executor = executor
        self._owns_executor = executor is None
        self._closed = False
        self._lock = threading.Lock()
        self._stuck: set[Future] = set()
        self._watchdogs: set[threading.Timer] = set()
        self._stats = {"requested": 0, "delivered": 0, "fallbacks": 0, "timeouts": 0}

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="Commentary",
                )
            return self._executor

    def _fallback(self, status: RoundStatus, multiplier: Decimal, round_id: str | None) -> Commentary:
        return Commentary(
            text=self.fallback_text,
            tone=tone_for(status, multiplier),
            round_id=round_id,
            fallback=True,
        )

    def fetch(
        self,
        status: RoundStatus,
        multiplier: Decimal,
        last_crash: Decimal | None = None,
        round_id: str | None = None,
    ) -> Commentary:
        """Call the provider inline; never raises"""
        try:
            text = self.provider(status, multiplier, last_crash)
            if not isinstance(text, str) or not text.strip():
                raise ValueError("empty commentary")
            return Commentary(text=text.strip(), tone=tone_for(status, multiplier), round_id=round_id)
        except Exception as e:
            self._stats["fallbacks"] += 1
            logger.warning(f"Commentary provider failed ({e}), using fallback")
            return self._fallback(status, multiplier, round_id)

    def request(
        self,
        status: RoundStatus,
        multiplier: Decimal,
        last_crash: Decimal | None,
        on_ready: Callable[[Commentary], None],
        round_id: str | None = None,
    ) -> Future | None:
        """
        Fetch asynchronously and hand the result to on_ready

        on_ready runs on a worker or watchdog thread; callers that own state
        should marshal it back onto their own thread.
        """
        if self._closed:
            logger.debug("Commentary request dropped: service shut down")
            return None
        self._stats["requested"] += 1
        answered = threading.Lock()

        def settle(commentary: Commentary) -> bool:
            if not answered.acquire(blocking=False):
                return False
            self._stats["delivered"] += 1
            try:
                on_ready(commentary)
            except Exception as e:
                logger.error(f"Commentary callback failed: {e}", exc_info=True)
            return True

        try:
            future = self._get_executor().submit(self.fetch, status, multiplier, last_crash, round_id)
        except RuntimeError as e:
            # Executor already shut down
            logger.debug(f"Commentary request dropped: {e}")
            return None

        def on_timeout():
            with self._lock:
                self._watchdogs.discard(watchdog)
            if self._closed or future.done():
                return
            self._stats["timeouts"] += 1
            self._stats["fallbacks"] += 1
            logger.warning(f"Commentary provider timed out after {self.timeout}s, using fallback")
            settle(self._fallback(status, multiplier, round_id))
            if not future.cancel():
                self._abandon(future)

        def deliver(done: Future):
            watchdog.cancel()
            with self._lock:
                self._watchdogs.discard(watchdog)
                self._stuck.discard(done)
            if done.cancelled():
                # pool replaced under a queued request
                if not self._closed and settle(self._fallback(status, multiplier, round_id)):
                    self._stats["fallbacks"] += 1
                return
            try:
                commentary = done.result()
            except Exception as e:
                logger.error(f"Commentary task failed: {e}", exc_info=True)
                commentary = self._fallback(status, multiplier, round_id)
            settle(commentary)

        watchdog = threading.Timer(self.timeout, on_timeout)
        watchdog.daemon = True
        watchdog.name = "CommentaryTimeout"
        with self._lock:
            self._watchdogs.add(watchdog)
        watchdog.start()
        future.add_done_callback(deliver)
        return future

    def _abandon(self, future: Future):
        """Record a worker stuck in the provider; replace the pool once all are stuck"""
        with self._lock:
            self._stuck.add(future)
            if not self._owns_executor or len(self._stuck) < self.max_workers:
                return
            executor, self._executor = self._executor, None
            self._stuck.clear()
        logger.warning("All commentary workers are stuck, starting a fresh pool")
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def get_stats(self) -> dict:
        return dict(self._stats)

    def shutdown(self, wait: bool = False):
        self._closed = True
        with self._lock:
            watchdogs = list(self._watchdogs)
            self._watchdogs.clear()
        for watchdog in watchdogs:
            watchdog.cancel()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None and self._owns_executor:
            executor.shutdown(wait=wait, cancel_futures=True)


class InlineCommentaryService(CommentaryService):
    """Synchronous variant: request() calls the provider on the caller's thread"""

    def request(self, status, multiplier, last_crash, on_ready, round_id=None):
        self._stats["requested"] += 1
        commentary = self.fetch(status, multiplier, last_crash, round_id)
        self._stats["delivered"] += 1
        try:
            on_ready(commentary)
        except Exception as e:
            logger.error(f"Commentary callback failed: {e}", exc_info=True)
        return None
