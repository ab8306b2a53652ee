"""
Bet data model
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from .enums import BetOutcome


@dataclass
class Bet:
    """
    A stake on the current round, held by the player or a simulated opponent

    Attributes:
        owner_name: Display name of the bettor
        amount: Stake (already debited for the player)
        bet_id: Unique identifier
        cashed_out: Whether the stake was cashed out before the crash
        cashout_multiplier: Multiplier locked in at cash-out (set once)
        status: Lifecycle status (active/cashed_out/lost)
    """

    owner_name: str
    amount: Decimal
    bet_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cashed_out: bool = False
    cashout_multiplier: Decimal | None = None
    status: str = field(default=BetOutcome.ACTIVE)

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValueError(f"amount must be positive, got {self.amount}")
        if self.cashed_out != (self.cashout_multiplier is not None):
            raise ValueError("cashout_multiplier must be set exactly when cashed_out")

    @property
    def is_live(self) -> bool:
        """True while the stake still rides the multiplier"""
        return self.status == BetOutcome.ACTIVE

    def cash_out(self, multiplier: Decimal) -> Decimal:
        """
        Lock in the multiplier and return the payout

        Raises:
            ValueError: If the bet is no longer live
        """
        if not self.is_live:
            raise ValueError(f"Cannot cash out bet in {self.status} state")
        if multiplier < 1:
            raise ValueError(f"cashout multiplier must be >= 1.0, got {multiplier}")

        self.cashed_out = True
        self.cashout_multiplier = multiplier
        self.status = BetOutcome.CASHED_OUT
        return self.payout

    def mark_lost(self):
        """Settle an uncashed stake as a total loss"""
        if not self.is_live:
            raise ValueError(f"Cannot settle bet in {self.status} state")
        self.status = BetOutcome.LOST

    @property
    def payout(self) -> Decimal:
        """Credited amount (zero unless cashed out)"""
        if self.cashout_multiplier is None:
            return Decimal("0")
        return self.amount * self.cashout_multiplier

    def to_dict(self, preserve_precision: bool = False) -> dict:
        """Convert to dictionary

        Args:
            preserve_precision: If True, keep Decimals as strings
        """

        def convert(value):
            if isinstance(value, Decimal):
                return str(value) if preserve_precision else float(value)
            return value

        return {
            "bet_id": self.bet_id,
            "owner_name": self.owner_name,
            "amount": convert(self.amount),
            "cashed_out": self.cashed_out,
            "cashout_multiplier": (
                convert(self.cashout_multiplier) if self.cashout_multiplier is not None else None
            ),
            "status": self.status.value if isinstance(self.status, BetOutcome) else self.status,
        }
