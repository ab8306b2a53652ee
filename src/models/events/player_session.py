"""
PlayerSession Schema

Supplied by the external session provider once the player has logged in.
The engine treats it as immutable input and only reads it when the round
loop is started.
"""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class PlayerSession(BaseModel):
    """
    Logged-in player identity and starting balance.

    Example payload:
    {
        "username": "Maverick",
        "initialBalance": 1000.0
    }
    """

    username: str = Field(..., min_length=1, description="Display name")
    initial_balance: Decimal = Field(
        Decimal("1000.00"), alias="initialBalance", description="Starting balance"
    )

    @field_validator("initial_balance", mode="before")
    @classmethod
    def coerce_decimal(cls, v):
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("initial_balance")
    @classmethod
    def non_negative(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v < 0:
            raise ValueError(f"initial balance must be a non-negative number, got {v}")
        return v

    class Config:
        frozen = True
        populate_by_name = True
