"""Single-player round models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from flip_core.models.duel import Direction


class RoundPick(BaseModel):
    """A pick in a daily round. ``duplicate_index`` is the 1-based repeat count."""

    token_id: str
    direction: Direction
    duplicate_index: int = Field(default=1, ge=1)
    locked: bool = False
    start_price: float | None = None
    locked_price: float | None = None
    locked_points: int | None = None


class RoundItemResult(BaseModel):
    token_id: str
    direction: Direction
    duplicate_index: int
    points: int
    start_price: float | None = None
    close_price: float | None = None


class RoundSettlement(BaseModel):
    total_points: int
    items: list[RoundItemResult] = Field(default_factory=list)
