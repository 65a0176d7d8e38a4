"""Quote models — pair identity and normalized provider quotes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PairRef(BaseModel):
    """A concrete (network, pool address) pair. Hashable; used as the cache key."""

    model_config = ConfigDict(frozen=True)

    network: str
    pair_address: str

    @field_validator("network", "pair_address")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()

    @classmethod
    def of(cls, network: str, pair_address: str) -> PairRef:
        return cls(network=network, pair_address=pair_address)

    @property
    def key(self) -> str:
        return f"{self.network}:{self.pair_address}"

    @property
    def view_url(self) -> str:
        return f"https://dexscreener.com/{self.network}/{self.pair_address}"


class Quote(BaseModel):
    """A fully-populated price observation for one pair."""

    model_config = ConfigDict(frozen=True)

    network: str
    pair_address: str
    price_usd: float = Field(gt=0)
    change_pct_24h: float | None = None
    liquidity_usd: float | None = None
    fdv_usd: float | None = None
    fetched_at_ms: int
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def ref(self) -> PairRef:
        return PairRef.of(self.network, self.pair_address)
