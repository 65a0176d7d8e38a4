"""Token model — one playable card."""

from __future__ import annotations

from pydantic import BaseModel


class Token(BaseModel):
    id: str
    symbol: str
    name: str
    network: str = "base"
    pair_address: str | None = None
    dexscreener_url: str | None = None
