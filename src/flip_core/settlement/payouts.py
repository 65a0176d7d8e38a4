"""Apply settlement credits to user balance records."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from flip_core.models.user import Credit, LedgerEntry, UserRecord


def get_or_create_user(users: dict[str, UserRecord], user_id: str) -> UserRecord:
    if not user_id or not user_id.strip() or user_id == "undefined":
        raise ValueError(f"invalid user id: {user_id!r}")
    user = users.get(user_id)
    if user is None:
        user = UserRecord(id=user_id, updated_at=datetime.now(timezone.utc))
        users[user_id] = user
    return user


def apply_credit(user: UserRecord, credit: Credit, now: datetime | None = None) -> UserRecord:
    """Book *credit* on *user* in place.

    Competitive credits raise ``total_points`` (gains only) as well as the
    bank; bank-only credits such as refunds never touch the leaderboard.
    """
    if credit.competitive and credit.amount > 0:
        user.total_points += credit.amount
    user.bank_points += credit.amount
    user.logs.append(LedgerEntry(
        day=credit.day,
        kind=credit.kind,
        amount=credit.amount,
        competitive=credit.competitive,
        note=credit.note,
    ))
    user.updated_at = now or datetime.now(timezone.utc)
    return user


def apply_credits(
    users: dict[str, UserRecord],
    credits: Iterable[Credit],
    now: datetime | None = None,
) -> dict[str, UserRecord]:
    for credit in credits:
        apply_credit(get_or_create_user(users, credit.user_id), credit, now)
    return users
