"""Duel room models — 1v1 five-pick rooms."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

Direction = Literal["up", "down"]
RoomStatus = Literal["open", "ready", "locked", "settled", "cancelled"]
Winner = Literal["host", "guest", "draw"]

PICKS_PER_SIDE = 5


class DuelPick(BaseModel):
    """One token call. ``locked_signed_pct`` is frozen once ``locked`` is set."""

    token_id: str
    direction: Direction
    network: str | None = None
    pair_address: str | None = None
    locked: bool = False
    locked_at: datetime | None = None
    locked_signed_pct: float | None = None


class DuelSide(BaseModel):
    user_id: str
    entry_paid: bool = False
    locked: bool = False
    locked_at: datetime | None = None
    picks: list[DuelPick] = Field(default_factory=list, max_length=PICKS_PER_SIDE)

    @property
    def fully_locked(self) -> bool:
        return len(self.picks) == PICKS_PER_SIDE and all(p.locked for p in self.picks)


class SettlementResult(BaseModel):
    settled_at: datetime
    winner: Winner
    host_score: float
    guest_score: float
    payout_per_winner: int = 0


class DuelRoom(BaseModel):
    id: str
    created_at: datetime
    base_day: date
    eval_at: datetime
    entry_cost: int
    status: RoomStatus = "open"
    host: DuelSide
    guest: DuelSide | None = None
    result: SettlementResult | None = None
    seq: int | None = None

    def side_for(self, user_id: str) -> DuelSide | None:
        if self.host.user_id == user_id:
            return self.host
        if self.guest is not None and self.guest.user_id == user_id:
            return self.guest
        return None
