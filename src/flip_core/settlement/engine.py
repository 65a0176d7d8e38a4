"""Settlers — wire duel and round settlement to live prices and the stores."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone

import structlog

from flip_core.db.store import RoomStore, UserStore
from flip_core.errors import InvalidRoomStateError, NotParticipantError, QuoteFetchError, UpstreamError
from flip_core.models.duel import Direction, DuelPick, DuelRoom
from flip_core.models.round import RoundSettlement
from flip_core.quotes.service import PriceService
from flip_core.settlement.duels import (
    cancel_room,
    ensure_settleable,
    lock_pick,
    mark_locks,
    settle_room,
    settle_room_picks,
)
from flip_core.settlement.payouts import apply_credits
from flip_core.settlement.rounds import round_token_ids, settle_all_rounds
from flip_core.tokens.registry import TokenRegistry

log = structlog.get_logger("settlement_engine")


class DuelSettler:
    def __init__(
        self,
        rooms: RoomStore,
        users: UserStore,
        prices: PriceService,
        registry: TokenRegistry,
    ) -> None:
        self._rooms = rooms
        self._users = users
        self._prices = prices
        self._registry = registry

    async def live_signed_pct(self, pick: DuelPick) -> float | None:
        """Current direction-applied 24h change for *pick*, or None if unpriced."""
        token = self._registry.get(pick.token_id)
        if token is None:
            log.warning("unknown_token", token_id=pick.token_id)
            return None
        try:
            result = await self._prices.signed_change_pct(token, pick.direction)
        except QuoteFetchError as exc:
            log.warning("live_pct_failed", token_id=pick.token_id, error=str(exc))
            return None
        return result[0] if result is not None else None

    async def settle(self, room_id: str, now: datetime | None = None) -> DuelRoom:
        """Settle *room_id* and book payouts. Re-settling is a no-op."""
        now = now or datetime.now(timezone.utc)
        room = self._rooms.get(room_id)
        if room.status == "settled":
            return room

        ensure_settleable(room, now)

        scores = await settle_room_picks(
            room.host.picks,
            room.guest.picks if room.guest is not None else None,
            self.live_signed_pct,
        )
        settled, credits = settle_room(room, scores, now)

        users = apply_credits(self._users.load(), credits, now)
        self._rooms.put(settled)
        self._users.save(users)
        return settled

    async def lock_picks(
        self,
        room_id: str,
        user_id: str,
        picks: Sequence[tuple[str, Direction]],
        now: datetime | None = None,
    ) -> DuelRoom:
        """Lock the requested picks of *user_id*'s side at the live signed change."""
        now = now or datetime.now(timezone.utc)
        room = self._rooms.get(room_id)
        if room.status in ("settled", "cancelled"):
            raise InvalidRoomStateError(f"room {room.id} is {room.status}")
        side = room.side_for(user_id)
        if side is None:
            raise NotParticipantError(f"{user_id} is not in room {room.id}")
        if not side.entry_paid:
            raise InvalidRoomStateError("entry not paid")
        if not side.picks:
            raise InvalidRoomStateError("set picks first")

        requested = dict(picks)
        updated: list[DuelPick] = []
        for pick in side.picks:
            direction = requested.get(pick.token_id)
            if direction is None or pick.locked:
                updated.append(pick)
                continue
            pick = pick.model_copy(update={"direction": direction})
            token = self._registry.get(pick.token_id)
            if token is None:
                raise InvalidRoomStateError(f"unknown token {pick.token_id}")
            try:
                result = await self._prices.signed_change_pct(token, direction)
            except QuoteFetchError as exc:
                raise InvalidRoomStateError(f"price fetch failed for {pick.token_id}") from exc
            if result is None:
                raise InvalidRoomStateError(f"no price for {pick.token_id}")
            pct, ref = result
            updated.append(lock_pick(pick, pct, now, network=ref.network, pair_address=ref.pair_address))

        side_name = "host" if side is room.host else "guest"
        room = room.model_copy(update={side_name: side.model_copy(update={"picks": updated})})
        room = mark_locks(room, now)
        self._rooms.put(room)
        log.info("picks_locked", room_id=room.id, user_id=user_id, status=room.status)
        return room

    def cancel(self, room_id: str, user_id: str, now: datetime | None = None) -> DuelRoom:
        now = now or datetime.now(timezone.utc)
        room, credits = cancel_room(self._rooms.get(room_id), user_id, now)
        users = apply_credits(self._users.load(), credits, now)
        self._rooms.put(room)
        self._users.save(users)
        log.info("room_cancelled", room_id=room.id)
        return room


class RoundSettler:
    """Daily close of every user's single-player round."""

    def __init__(self, users: UserStore, prices: PriceService, registry: TokenRegistry) -> None:
        self._users = users
        self._prices = prices
        self._registry = registry

    async def close_prices(self, token_ids: Iterable[str]) -> dict[str, float]:
        """One price snapshot shared by every user; unpriced tokens are left out."""
        ids = sorted(token_ids)

        async def _price(token_id: str) -> float | None:
            token = self._registry.get(token_id)
            if token is None:
                log.warning("unknown_token", token_id=token_id)
                return None
            try:
                quote = await self._prices.quote_for_token(token)
            except (QuoteFetchError, UpstreamError) as exc:
                log.warning("close_price_failed", token_id=token_id, error=str(exc))
                return None
            return quote.price_usd if quote is not None else None

        prices = await asyncio.gather(*(_price(tid) for tid in ids))
        return {tid: p for tid, p in zip(ids, prices) if p is not None and p > 0}

    async def settle(self, day: date | None = None, now: datetime | None = None) -> dict[str, RoundSettlement]:
        now = now or datetime.now(timezone.utc)
        day = day or now.date()
        users = self._users.load()
        pending = [u for u in users.values() if u.last_settled_day is None or u.last_settled_day < day]
        if not pending:
            return {}

        snapshot = await self.close_prices(round_token_ids(pending))
        settled = settle_all_rounds(users, snapshot, day, now)
        self._users.save(users)
        log.info("rounds_settled", day=day.isoformat(), users=len(settled), priced_tokens=len(snapshot))
        return settled
