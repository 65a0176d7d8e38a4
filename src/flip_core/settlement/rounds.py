"""Single-player daily rounds — five picks scored from open to close."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timezone

import structlog

from flip_core.errors import PickLockedError
from flip_core.models.duel import Direction
from flip_core.models.round import RoundItemResult, RoundPick, RoundSettlement
from flip_core.models.user import Credit, UserRecord
from flip_core.settlement.payouts import apply_credit
from flip_core.settlement.scoring import score_pick

log = structlog.get_logger("round_settlement")


def assign_duplicate_indexes(token_ids: Iterable[str]) -> list[int]:
    """1-based occurrence count of each token id, in order: a, b, a -> 1, 1, 2."""
    seen: Counter[str] = Counter()
    out = []
    for tid in token_ids:
        seen[tid] += 1
        out.append(seen[tid])
    return out


def build_round(picks: Sequence[tuple[str, Direction]]) -> list[RoundPick]:
    indexes = assign_duplicate_indexes(tid for tid, _ in picks)
    return [
        RoundPick(token_id=tid, direction=direction, duplicate_index=dup)
        for (tid, direction), dup in zip(picks, indexes)
    ]


def lock_round_pick(
    pick: RoundPick,
    current_price: float | None,
    boost_level: int = 0,
    boost_active: bool = False,
) -> RoundPick:
    """Freeze the points of *pick* at *current_price*."""
    if pick.locked:
        raise PickLockedError(f"{pick.token_id} is already locked")
    points = score_pick(
        pick.start_price,
        current_price,
        pick.direction,
        pick.duplicate_index,
        boost_level=boost_level,
        boost_active=boost_active,
    )
    return pick.model_copy(update={
        "locked": True,
        "locked_price": current_price,
        "locked_points": points,
    })


def settle_round(
    active_round: Sequence[RoundPick],
    close_prices: Mapping[str, float],
    boost_level: int = 0,
    boost_active: bool = False,
) -> RoundSettlement:
    """Total points for a finished round.

    Locked picks keep the points frozen at lock time. Open picks are
    scored from their start price to the close; a pick missing either
    price contributes 0.
    """
    items: list[RoundItemResult] = []
    total = 0
    for pick in active_round:
        close = close_prices.get(pick.token_id)
        if pick.locked and pick.locked_points is not None:
            points = pick.locked_points
            close = pick.locked_price
        else:
            points = score_pick(
                pick.start_price,
                close,
                pick.direction,
                pick.duplicate_index,
                boost_level=boost_level,
                boost_active=boost_active,
            )
            if close is None:
                log.info("round_pick_unpriced", token_id=pick.token_id)
        total += points
        items.append(RoundItemResult(
            token_id=pick.token_id,
            direction=pick.direction,
            duplicate_index=pick.duplicate_index,
            points=points,
            start_price=pick.start_price,
            close_price=close,
        ))
    return RoundSettlement(total_points=total, items=items)


def roll_next_round(
    next_round: Sequence[RoundPick | None],
    prices: Mapping[str, float],
) -> list[RoundPick]:
    """Promote queued picks to the active round, opening at today's close.

    Picks whose token has no price are dropped.
    """
    rolled = []
    for pick in next_round:
        if pick is None:
            continue
        price = prices.get(pick.token_id)
        if not price or price <= 0:
            log.info("round_pick_dropped", token_id=pick.token_id, reason="no_price")
            continue
        rolled.append(pick.model_copy(update={
            "start_price": price,
            "locked": False,
            "locked_price": None,
            "locked_points": None,
        }))
    return rolled


def round_credit(user_id: str, settlement: RoundSettlement, day: date) -> Credit | None:
    """Competitive credit for a finished round; None when it scored nothing."""
    if settlement.total_points == 0:
        return None
    return Credit(
        user_id=user_id,
        amount=settlement.total_points,
        competitive=True,
        note=f"flip-round-{day.isoformat()}",
        day=day,
        kind="daily",
    )


def settle_user_round(
    user: UserRecord,
    close_prices: Mapping[str, float],
    day: date,
    now: datetime | None = None,
) -> RoundSettlement | None:
    """Close *user*'s active round for *day* and open the queued one.

    Runs at most once per user per day; a user already settled for *day*
    is left untouched and None is returned. Today's close is the next
    round's opening price.
    """
    if user.last_settled_day is not None and user.last_settled_day >= day:
        log.debug("round_already_settled", user_id=user.id, day=day.isoformat())
        return None

    now = now or datetime.now(timezone.utc)
    settlement = settle_round(user.active_round, close_prices)
    credit = round_credit(user.id, settlement, day)
    if credit is not None:
        apply_credit(user, credit, now)

    rolled = roll_next_round(user.next_round, close_prices)
    user.active_round = rolled
    if rolled:
        user.next_round = []

    user.current_round += 1
    user.last_settled_day = day
    user.updated_at = now
    log.info(
        "round_settled",
        user_id=user.id,
        day=day.isoformat(),
        total_points=settlement.total_points,
        next_picks=len(rolled),
    )
    return settlement


def round_token_ids(users: Iterable[UserRecord]) -> set[str]:
    """Every token id in an active or queued round."""
    ids: set[str] = set()
    for user in users:
        ids.update(p.token_id for p in user.active_round)
        ids.update(p.token_id for p in user.next_round if p is not None)
    return ids


def settle_all_rounds(
    users: Mapping[str, UserRecord],
    close_prices: Mapping[str, float],
    day: date,
    now: datetime | None = None,
) -> dict[str, RoundSettlement]:
    """Settle every user not yet settled for *day* against one price snapshot."""
    settled = {}
    for user_id, user in users.items():
        result = settle_user_round(user, close_prices, day, now)
        if result is not None:
            settled[user_id] = result
    return settled
