"""Pydantic domain models."""

from flip_core.models.duel import (
    Direction,
    DuelPick,
    DuelRoom,
    DuelSide,
    SettlementResult,
)
from flip_core.models.price import CachedPrice, LivePrice
from flip_core.models.quote import PairRef, Quote
from flip_core.models.round import RoundItemResult, RoundPick, RoundSettlement
from flip_core.models.token import Token
from flip_core.models.user import Credit, LedgerEntry, UserRecord

__all__ = [
    "CachedPrice",
    "Credit",
    "Direction",
    "DuelPick",
    "DuelRoom",
    "DuelSide",
    "LedgerEntry",
    "LivePrice",
    "PairRef",
    "Quote",
    "RoundItemResult",
    "RoundPick",
    "RoundSettlement",
    "SettlementResult",
    "Token",
    "UserRecord",
]
