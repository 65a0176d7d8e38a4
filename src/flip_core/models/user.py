"""User records — balances, ledger and the daily round picks."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from flip_core.models.round import RoundPick

STARTING_BANK_POINTS = 10000
STARTING_GIFT_POINTS = 10000

LedgerKind = Literal["daily", "duel", "system"]


class LedgerEntry(BaseModel):
    day: date
    kind: LedgerKind = "system"
    amount: int = 0
    competitive: bool = False
    note: str | None = None


class UserRecord(BaseModel):
    id: str
    total_points: int = 0
    bank_points: int = STARTING_BANK_POINTS
    gift_points: int = STARTING_GIFT_POINTS
    logs: list[LedgerEntry] = Field(default_factory=list)
    active_round: list[RoundPick] = Field(default_factory=list)
    next_round: list[RoundPick | None] = Field(default_factory=list)
    current_round: int = 1
    last_settled_day: date | None = None
    updated_at: datetime | None = None


class Credit(BaseModel):
    """A payout instruction produced by settlement.

    ``competitive`` credits count toward leaderboard totals; the rest only
    touch the spendable bank.
    """

    user_id: str
    amount: int
    competitive: bool
    note: str
    day: date
    kind: LedgerKind = "system"
