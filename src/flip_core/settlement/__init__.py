"""Scoring and settlement for duels and single-player rounds."""

from flip_core.settlement.duels import (
    PickSettlement,
    cancel_room,
    decide_winner,
    settle_room,
    settle_room_picks,
)
from flip_core.settlement.engine import DuelSettler, RoundSettler
from flip_core.settlement.rounds import (
    assign_duplicate_indexes,
    lock_round_pick,
    roll_next_round,
    round_credit,
    settle_all_rounds,
    settle_round,
    settle_user_round,
)
from flip_core.settlement.scoring import score_pick

__all__ = [
    "DuelSettler",
    "PickSettlement",
    "RoundSettler",
    "assign_duplicate_indexes",
    "cancel_room",
    "decide_winner",
    "lock_round_pick",
    "roll_next_round",
    "round_credit",
    "score_pick",
    "settle_all_rounds",
    "settle_room",
    "settle_room_picks",
    "settle_round",
    "settle_user_round",
]
