"""
Input validation functions

Player actions arrive from the presentation layer and can race the round
loop, so every check returns (is_valid, error_message) instead of raising.
"""

from decimal import Decimal

from config import config
from models import Bet, RoundStatus


def validate_bet_amount(
    amount: Decimal, balance: Decimal, action: str = "BET"
) -> tuple[bool, str | None]:
    """
    Validate bet amount is positive, finite and affordable

    Args:
        amount: Stake
        balance: Current wallet balance
        action: Action type (for error messages)

    Returns:
        Tuple of (is_valid, error_message)
        - (True, None) if valid
        - (False, "error message") if invalid
    """
    if not isinstance(amount, Decimal):
        return False, f"Invalid {action} amount type: {type(amount).__name__}"

    if not amount.is_finite():
        return False, f"Invalid {action} amount: {amount} (must be finite)"

    if not balance.is_finite():
        return False, f"Invalid balance: {balance} (must be finite)"

    if amount <= 0:
        return False, f"{action} amount {amount} below minimum (must be positive)"

    max_bet = config.get("financial", "max_bet")
    if amount > max_bet:
        return False, f"{action} amount {amount} exceeds maximum {max_bet}"

    if balance < 0:
        return False, f"Invalid balance state: {balance}"

    if amount > balance:
        return False, f"Insufficient balance: have {balance:.2f}, need {amount}"

    return True, None


def validate_place(
    amount: Decimal, balance: Decimal, status: RoundStatus, active_bet: Bet | None
) -> tuple[bool, str | None]:
    """
    Validate bet placement

    Args:
        amount: Stake
        balance: Current balance
        status: Current round status
        active_bet: The player's current bet, if any

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not RoundStatus.accepts_bets(status):
        return False, f"Betting closed in {RoundStatus(status).value} state"

    if active_bet is not None:
        return False, "A bet is already active this round"

    return validate_bet_amount(amount, balance, "BET")


def validate_cash_out(
    status: RoundStatus, active_bet: Bet | None, multiplier: Decimal
) -> tuple[bool, str | None]:
    """
    Validate cash-out

    Args:
        status: Current round status
        active_bet: The player's current bet, if any
        multiplier: Multiplier the payout would lock in

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not RoundStatus.accepts_cashout(status):
        return False, f"Cash-out not allowed in {RoundStatus(status).value} state"

    if active_bet is None:
        return False, "No active bet to cash out"

    if active_bet.cashed_out:
        return False, "Bet already cashed out"

    if not active_bet.is_live:
        return False, f"Bet already settled ({active_bet.status})"

    if multiplier < config.get("game_rules", "min_multiplier"):
        return False, f"Invalid multiplier {multiplier}"

    return True, None
