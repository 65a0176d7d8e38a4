"""Polled price models served to the game."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

PriceSource = Literal["dexscreener", "geckoterminal"]


class CachedPrice(BaseModel):
    """Last known price for one tracked token, written whole by the poller."""

    model_config = ConfigDict(frozen=True)

    token_id: str
    symbol: str
    price_usd: float
    baseline_price: float
    change_pct: float | None = None
    fdv_usd: float | None = None
    as_of: datetime
    source: PriceSource
    network: str
    pair_address: str
    view_url: str | None = None


class LivePrice(BaseModel):
    """Caller-facing live price for a token."""

    price_usd: float
    baseline_price: float
    change_pct: float | None = None
    fdv_usd: float | None = None
    as_of: datetime
    source: PriceSource

    @classmethod
    def from_cached(cls, cached: CachedPrice) -> LivePrice:
        return cls(
            price_usd=cached.price_usd,
            baseline_price=cached.baseline_price,
            change_pct=cached.change_pct,
            fdv_usd=cached.fdv_usd,
            as_of=cached.as_of,
            source=cached.source,
        )
