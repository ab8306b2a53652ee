"""
Commentary Schema - advisory flavor text shown beside the round
"""

from pydantic import BaseModel, Field

from ..enums import CommentaryTone


class Commentary(BaseModel):
    """Advisory message with a display tone."""

    text: str = Field(..., description="Message shown to the player")
    tone: CommentaryTone = Field(CommentaryTone.NEUTRAL, description="Display tone")
    round_id: str | None = Field(None, description="Round the message was requested for")
    fallback: bool = Field(False, description="True when the provider failed")

    class Config:
        frozen = True
