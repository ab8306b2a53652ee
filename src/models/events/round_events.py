"""
Round Event Schemas

Payloads published on the event bus for the presentation layer.
"""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from ..enums import RoundStatus


class RoundStatusChanged(BaseModel):
    """Status transition of the round loop."""

    round_id: str
    old_status: RoundStatus
    new_status: RoundStatus
    multiplier: Decimal = Decimal("1.0")
    crash_point: Decimal | None = Field(None, description="Only revealed once CRASHED")


class MultiplierTick(BaseModel):
    """Public multiplier after one tick while FLYING."""

    round_id: str
    tick: int
    multiplier: Decimal


class BetEvent(BaseModel):
    """Player bet lifecycle notification."""

    kind: Literal["placed", "win", "loss", "cleared"]
    bet_id: str
    owner_name: str
    amount: Decimal = Field(..., description="Stake for placed/loss, credited payout for win")
    multiplier: Decimal | None = None
    balance: Decimal


class BalanceChanged(BaseModel):
    """Balance mutation with its cause."""

    old: Decimal
    new: Decimal
    amount: Decimal
    reason: str


class OpponentView(BaseModel):
    """One simulated opponent row in the live-activity list."""

    bet_id: str
    owner_name: str
    amount: Decimal
    cashed_out: bool
    cashout_multiplier: Decimal | None = None


class OpponentsUpdated(BaseModel):
    """Snapshot of the live-activity list."""

    round_id: str
    opponents: list[OpponentView]
    online: int = Field(..., description="Displayed lobby size")


class HistoryUpdated(BaseModel):
    """Recent crash points, most recent first."""

    crash_points: list[Decimal]
