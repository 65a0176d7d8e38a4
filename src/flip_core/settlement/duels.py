"""Duel room settlement — state machine, side scores, winner and payouts.

Everything here is pure except ``side_score`` / ``settle_room_picks``,
which await a caller-supplied live lookup for picks that were never
locked. Room mutation returns new models; persisting them is the
caller's job.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

import structlog

from flip_core.errors import (
    EvalTimeNotReachedError,
    InvalidRoomStateError,
    NotParticipantError,
    PickLockedError,
)
from flip_core.models.duel import (
    DuelPick,
    DuelRoom,
    DuelSide,
    RoomStatus,
    SettlementResult,
    Winner,
)
from flip_core.models.user import Credit

log = structlog.get_logger("duel_settlement")

LiveSignedPct = Callable[[DuelPick], Awaitable[float | None]]

ROOM_TRANSITIONS: dict[RoomStatus, frozenset[RoomStatus]] = {
    "open": frozenset({"ready", "cancelled", "settled"}),
    "ready": frozenset({"locked", "settled"}),
    "locked": frozenset({"settled"}),
    "settled": frozenset(),
    "cancelled": frozenset(),
}


def can_transition(current: RoomStatus, target: RoomStatus) -> bool:
    return target in ROOM_TRANSITIONS.get(current, frozenset())


def _require_transition(room: DuelRoom, target: RoomStatus) -> None:
    if not can_transition(room.status, target):
        raise InvalidRoomStateError(f"room {room.id} cannot go from {room.status} to {target}")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def next_midnight(now: datetime) -> datetime:
    """First UTC midnight strictly after *now*."""
    day = _as_utc(now).date()
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)


def new_room(
    host_user_id: str,
    entry_cost: int,
    now: datetime,
    *,
    entry_paid: bool = True,
    room_id: str | None = None,
) -> DuelRoom:
    """A fresh open room evaluated at the next UTC midnight."""
    now = _as_utc(now)
    return DuelRoom(
        id=room_id or f"duel_{uuid.uuid4().hex[:12]}",
        created_at=now,
        base_day=now.date(),
        eval_at=next_midnight(now),
        entry_cost=entry_cost,
        host=DuelSide(user_id=host_user_id, entry_paid=entry_paid),
    )


# ── Scores ────────────────────────────────────────────────────


@dataclass(frozen=True)
class PickSettlement:
    host_score: float
    guest_score: float
    winner: Winner


async def side_score(picks: Sequence[DuelPick], live_signed_pct: LiveSignedPct) -> float:
    """Sum of direction-applied 24h change percentages.

    Locked picks contribute their frozen value; the rest are looked up
    live. A pick with no resolvable price adds nothing.
    """
    score = 0.0
    for pick in picks:
        if pick.locked and pick.locked_signed_pct is not None:
            score += pick.locked_signed_pct
            continue
        pct = await live_signed_pct(pick)
        if pct is None:
            log.info("pick_unpriced", token_id=pick.token_id, direction=pick.direction)
            continue
        score += pct
    return score


def decide_winner(host_score: float, guest_score: float, has_guest: bool = True) -> Winner:
    if not has_guest:
        return "draw"
    if host_score > guest_score:
        return "host"
    if guest_score > host_score:
        return "guest"
    return "draw"


async def settle_room_picks(
    host_picks: Sequence[DuelPick],
    guest_picks: Sequence[DuelPick] | None,
    live_signed_pct: LiveSignedPct,
) -> PickSettlement:
    host = await side_score(host_picks, live_signed_pct)
    guest = await side_score(guest_picks, live_signed_pct) if guest_picks is not None else 0.0
    return PickSettlement(
        host_score=host,
        guest_score=guest,
        winner=decide_winner(host, guest, has_guest=guest_picks is not None),
    )


def ensure_settleable(room: DuelRoom, now: datetime) -> None:
    """Raise unless *room* may be settled at *now*."""
    _require_transition(room, "settled")
    if _as_utc(now) < room.eval_at:
        raise EvalTimeNotReachedError(f"room {room.id} evaluates at {room.eval_at.isoformat()}")


# ── Payouts ───────────────────────────────────────────────────


def payouts_for(room: DuelRoom, winner: Winner) -> tuple[list[Credit], int]:
    """Credits for a settled outcome and the per-winner payout.

    A winner takes twice the entry as competitive points. A draw refunds
    the entry, bank-only, to every side that actually paid it.
    """
    if winner == "draw":
        credits = [
            Credit(
                user_id=side.user_id,
                amount=room.entry_cost,
                competitive=False,
                note=f"duel-refund-{room.id}",
                day=room.base_day,
                kind="duel",
            )
            for side in (room.host, room.guest)
            if side is not None and side.entry_paid
        ]
        return credits, 0

    target = room.host if winner == "host" else room.guest
    if target is None:
        raise InvalidRoomStateError(f"room {room.id} has no {winner} side")
    payout = room.entry_cost * 2
    return [
        Credit(
            user_id=target.user_id,
            amount=payout,
            competitive=True,
            note=f"duel-win-{room.id}",
            day=room.base_day,
            kind="duel",
        )
    ], payout


def settle_room(
    room: DuelRoom,
    scores: PickSettlement,
    now: datetime,
) -> tuple[DuelRoom, list[Credit]]:
    """Apply a computed outcome to *room*.

    Settling an already settled room returns it unchanged with no credits.
    """
    if room.status == "settled":
        return room, []
    now = _as_utc(now)
    ensure_settleable(room, now)

    credits, payout = payouts_for(room, scores.winner)
    settled = room.model_copy(update={
        "status": "settled",
        "result": SettlementResult(
            settled_at=now,
            winner=scores.winner,
            host_score=scores.host_score,
            guest_score=scores.guest_score,
            payout_per_winner=payout,
        ),
    })
    log.info(
        "room_settled",
        room_id=room.id,
        winner=scores.winner,
        host_score=scores.host_score,
        guest_score=scores.guest_score,
        payout=payout,
    )
    return settled, credits


def cancel_room(room: DuelRoom, user_id: str, now: datetime) -> tuple[DuelRoom, list[Credit]]:
    """Host walks away from an open room before anyone joined."""
    if room.status != "open" or room.guest is not None:
        raise InvalidRoomStateError(f"room {room.id} is not open")
    if room.host.user_id != user_id:
        raise NotParticipantError("only the host can cancel")
    _require_transition(room, "cancelled")

    credits = []
    if room.host.entry_paid:
        credits.append(Credit(
            user_id=room.host.user_id,
            amount=room.entry_cost,
            competitive=False,
            note=f"duel-cancel-{room.id}",
            day=room.base_day,
            kind="duel",
        ))
    cancelled = room.model_copy(update={
        "status": "cancelled",
        "result": SettlementResult(settled_at=now, winner="draw", host_score=0, guest_score=0),
    })
    return cancelled, credits


# ── Locking ───────────────────────────────────────────────────


def lock_pick(
    pick: DuelPick,
    signed_pct: float,
    now: datetime,
    network: str | None = None,
    pair_address: str | None = None,
) -> DuelPick:
    """Freeze *pick* at *signed_pct*. A locked pick can never be re-locked."""
    if pick.locked:
        raise PickLockedError(f"{pick.token_id} is already locked")
    return pick.model_copy(update={
        "locked": True,
        "locked_at": now,
        "locked_signed_pct": signed_pct,
        "network": network or pick.network,
        "pair_address": pair_address or pick.pair_address,
    })


def mark_locks(room: DuelRoom, now: datetime) -> DuelRoom:
    """Flag fully locked sides, and the room once both sides are locked."""
    updates: dict = {}
    for name in ("host", "guest"):
        side: DuelSide | None = getattr(room, name)
        if side is not None and not side.locked and side.fully_locked:
            updates[name] = side.model_copy(update={"locked": True, "locked_at": now})
    room = room.model_copy(update=updates) if updates else room

    if (
        room.status == "ready"
        and room.host.locked
        and room.guest is not None
        and room.guest.locked
    ):
        room = room.model_copy(update={"status": "locked"})
    return room
