"""
Bet ledger - the local player's balance and single active bet
"""

import logging
import threading
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Any

from config import config
from models import BalanceChanged, Bet, BetEvent, RoundStatus

from .observers import ObserverRegistry, StateEvents
from .validators import validate_cash_out, validate_place

logger = logging.getLogger(__name__)

MAX_TRANSACTION_LOG_SIZE = 1000


class BetLedger:
    """
    Tracks the player's balance and at most one active bet

    Responsibilities:
    - Validate and execute place / cash-out
    - Settle an uncashed bet as a loss when the round crashes
    - Keep the staged bet amount (bet slip)
    - Publish win/loss/balance notifications to observers

    Rejected actions are no-ops that return an error result; nothing here
    raises for a player action arriving in the wrong state.
    """

    def __init__(
        self,
        initial_balance: Decimal | None = None,
        owner_name: str = "You",
        observers: ObserverRegistry | None = None,
    ):
        if initial_balance is None:
            initial_balance = config.get("financial", "initial_balance")
        self.owner_name = owner_name
        self.observers = observers or ObserverRegistry()

        self._balance = initial_balance
        self._active_bet: Bet | None = None
        self._bet_amount = config.get("financial", "default_bet")
        self._transaction_log: deque[dict] = deque(maxlen=MAX_TRANSACTION_LOG_SIZE)
        self._stats = self._fresh_stats(initial_balance)

        self._lock = threading.RLock()

        logger.info(f"BetLedger initialized with balance: {initial_balance}")

    @staticmethod
    def _fresh_stats(initial_balance: Decimal) -> dict[str, Any]:
        return {
            "bets_placed": 0,
            "bets_won": 0,
            "bets_lost": 0,
            "total_wagered": Decimal("0"),
            "total_paid_out": Decimal("0"),
            "total_credited": Decimal("0"),
            "peak_balance": initial_balance,
        }

    # ========== State Access ==========

    @property
    def balance(self) -> Decimal:
        with self._lock:
            return self._balance

    @property
    def active_bet(self) -> Bet | None:
        with self._lock:
            return self._active_bet

    @property
    def bet_amount(self) -> Decimal:
        """Staged amount used when place() is called without one"""
        with self._lock:
            return self._bet_amount

    def get_stats(self, key: str | None = None) -> Any:
        with self._lock:
            if key:
                return self._stats.get(key)
            return self._stats.copy()

    def get_transaction_log(self, limit: int | None = None) -> list[dict]:
        with self._lock:
            entries = list(self._transaction_log)
        if limit:
            return entries[-limit:]
        return entries

    def potential_payout(self, status: RoundStatus, multiplier: Decimal) -> Decimal | None:
        """What cash_out() would credit right now, None if it would be rejected"""
        with self._lock:
            is_valid, _ = validate_cash_out(status, self._active_bet, multiplier)
            if not is_valid:
                return None
            return self._active_bet.amount * multiplier

    # ========== Bet Slip ==========

    def set_bet_amount(self, amount: Decimal) -> Decimal:
        """Stage a bet amount, floored at the configured minimum"""
        amount = Decimal(str(amount))
        if not amount.is_finite():
            logger.debug(f"Ignoring non-finite bet amount {amount}")
            return self.bet_amount
        with self._lock:
            self._bet_amount = max(config.get("financial", "min_bet"), amount)
            return self._bet_amount

    def increase_bet_amount(self) -> Decimal:
        return self.set_bet_amount(self.bet_amount + config.get("financial", "bet_step"))

    def decrease_bet_amount(self) -> Decimal:
        return self.set_bet_amount(self.bet_amount - config.get("financial", "bet_step"))

    # ========== Bet Lifecycle ==========

    def place(self, amount: Decimal | None, status: RoundStatus) -> dict[str, Any]:
        """
        Place the player's bet for the upcoming round

        Debit and bet creation happen as one unit under the ledger lock.

        Args:
            amount: Stake (None uses the staged bet amount)
            status: Current round status

        Returns:
            Result dictionary with success, reason, and new balance
        """
        with self._lock:
            if amount is None:
                amount = self._bet_amount
            elif not isinstance(amount, Decimal):
                amount = Decimal(str(amount))

            is_valid, error = validate_place(amount, self._balance, status, self._active_bet)
            if not is_valid:
                logger.debug(f"BET rejected: {error}")
                return self._error_result(error, "BET")

            bet = Bet(owner_name=self.owner_name, amount=amount)
            old_balance = self._balance
            self._apply_balance(-amount, "bet placed")
            self._active_bet = bet
            self._stats["bets_placed"] += 1
            self._stats["total_wagered"] += amount
            new_balance = self._balance

        self._emit_balance(old_balance, new_balance, -amount, "bet placed")
        self.observers.emit(
            StateEvents.BET_PLACED,
            BetEvent(
                kind="placed",
                bet_id=bet.bet_id,
                owner_name=bet.owner_name,
                amount=amount,
                balance=new_balance,
            ),
        )

        logger.info(f"BET: {amount} placed (balance {new_balance})")
        return self._success_result("BET", amount, balance_change=-amount, bet_id=bet.bet_id)

    def cash_out(self, status: RoundStatus, multiplier: Decimal) -> dict[str, Any]:
        """
        Cash out the active bet at the current multiplier

        Args:
            status: Current round status
            multiplier: Current public multiplier

        Returns:
            Result dictionary with success, payout and multiplier
        """
        with self._lock:
            is_valid, error = validate_cash_out(status, self._active_bet, multiplier)
            if not is_valid:
                logger.debug(f"CASHOUT rejected: {error}")
                return self._error_result(error, "CASHOUT")

            bet = self._active_bet
            payout = bet.cash_out(multiplier)
            old_balance = self._balance
            self._apply_balance(payout, "cash out")
            self._stats["bets_won"] += 1
            self._stats["total_paid_out"] += payout
            new_balance = self._balance

        self._emit_balance(old_balance, new_balance, payout, "cash out")
        self.observers.emit(
            StateEvents.BET_WON,
            BetEvent(
                kind="win",
                bet_id=bet.bet_id,
                owner_name=bet.owner_name,
                amount=payout,
                multiplier=multiplier,
                balance=new_balance,
            ),
        )

        logger.info(f"CASHOUT: {bet.amount} at {multiplier}x -> +{payout} (balance {new_balance})")
        return self._success_result(
            "CASHOUT", bet.amount, balance_change=payout, payout=payout, multiplier=multiplier
        )

    def settle_on_crash(self) -> dict[str, Any] | None:
        """
        Settle the active bet when the round crashes

        An uncashed bet is a total loss: the stake was already debited, so
        the balance does not move. A cashed-out or already settled bet is
        left alone.

        Returns:
            Loss details, or None when nothing was settled
        """
        with self._lock:
            bet = self._active_bet
            if bet is None or not bet.is_live:
                return None

            bet.mark_lost()
            self._stats["bets_lost"] += 1
            balance = self._balance

        self.observers.emit(
            StateEvents.BET_LOST,
            BetEvent(
                kind="loss",
                bet_id=bet.bet_id,
                owner_name=bet.owner_name,
                amount=bet.amount,
                balance=balance,
            ),
        )

        logger.info(f"BET LOST: {bet.amount} (balance {balance})")
        return {"bet_id": bet.bet_id, "amount": bet.amount, "balance": balance}

    def clear_for_next_round(self) -> Bet | None:
        """Free the bet slot so a new bet can be placed; returns the cleared bet"""
        with self._lock:
            bet = self._active_bet
            self._active_bet = None
            balance = self._balance

        if bet is not None:
            self.observers.emit(
                StateEvents.BET_CLEARED,
                BetEvent(
                    kind="cleared",
                    bet_id=bet.bet_id,
                    owner_name=bet.owner_name,
                    amount=bet.amount,
                    multiplier=bet.cashout_multiplier,
                    balance=balance,
                ),
            )
            logger.debug(f"Bet slot cleared ({bet.bet_id})")
        return bet

    # ========== Balance ==========

    def credit_balance(self, amount: Decimal, reason: str = "top-up") -> dict[str, Any]:
        """External credit (top-up). Non-positive or non-finite amounts are ignored."""
        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount))

        if not amount.is_finite() or amount <= 0:
            logger.debug(f"CREDIT rejected: invalid amount {amount}")
            return self._error_result(f"Invalid credit amount: {amount}", "CREDIT")

        with self._lock:
            old_balance = self._balance
            self._apply_balance(amount, reason)
            self._stats["total_credited"] += amount
            new_balance = self._balance

        self._emit_balance(old_balance, new_balance, amount, reason)
        logger.info(f"CREDIT: +{amount} ({reason})")
        return self._success_result("CREDIT", amount, balance_change=amount)

    def reset(self, initial_balance: Decimal, owner_name: str | None = None):
        """Start over for a new session"""
        with self._lock:
            old_balance = self._balance
            self._balance = initial_balance
            self._active_bet = None
            self._bet_amount = config.get("financial", "default_bet")
            self._transaction_log.clear()
            self._stats = self._fresh_stats(initial_balance)
            if owner_name:
                self.owner_name = owner_name

        self._emit_balance(old_balance, initial_balance, initial_balance - old_balance, "reset")
        logger.info(f"BetLedger reset for {self.owner_name} with balance {initial_balance}")

    def _apply_balance(self, amount: Decimal, reason: str):
        """Mutate balance and log the transaction (caller holds the lock)"""
        old_balance = self._balance
        new_balance = old_balance + amount
        if new_balance < 0:
            # validate_place guarantees affordability
            raise ValueError(f"Balance would go negative: {new_balance}")

        self._balance = new_balance
        self._transaction_log.append(
            {
                "timestamp": datetime.now(),
                "type": "balance_change",
                "amount": amount,
                "old_balance": old_balance,
                "new_balance": new_balance,
                "reason": reason,
            }
        )
        if new_balance > self._stats["peak_balance"]:
            self._stats["peak_balance"] = new_balance

    def _emit_balance(self, old: Decimal, new: Decimal, amount: Decimal, reason: str):
        self.observers.emit(
            StateEvents.BALANCE_CHANGED,
            BalanceChanged(old=old, new=new, amount=amount, reason=reason),
        )

    # ========== Result Helpers ==========

    def _success_result(
        self, action: str, amount: Decimal, balance_change: Decimal, **kwargs
    ) -> dict[str, Any]:
        """Create success result dictionary"""
        result = {
            "success": True,
            "action": action,
            "amount": amount,
            "new_balance": self.balance,
            "balance_change": balance_change,
            "reason": f"{action} executed successfully",
        }
        result.update(kwargs)
        return result

    def _error_result(self, reason: str, action: str) -> dict[str, Any]:
        """Create error result dictionary"""
        return {
            "success": False,
            "action": action,
            "reason": reason,
            "balance": self.balance,
        }
