"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from sqlalchemy import BigInteger, Integer, JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import flip_core.db.tables  # noqa: F401
from flip_core.db.base import Base


@pytest.fixture
def db_session():
    """In-memory SQLite session with all tables created.

    Patches JSONB→JSON and BigInteger→Integer for SQLite compatibility.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite doesn't support schemas or JSONB
    for table in Base.metadata.tables.values():
        table.schema = None
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
            if isinstance(col.type, BigInteger):
                col.type = Integer()

    Base.metadata.create_all(engine)

    session = Session(engine)
    yield session
    session.close()
    engine.dispose()


# ── Upstream fakes ────────────────────────────────────────────


def dex_pair(
    address: str,
    price: float | str | None = "1.0",
    *,
    chain: str = "base",
    h24: float | None = 5.0,
    liquidity: float | None = 50_000,
    base_symbol: str = "TKN",
    base_address: str | None = None,
    quote_address: str | None = None,
    created_at_ms: int | None = None,
    fdv: float | dict | None = None,
) -> dict:
    """Build a Dexscreener pair object."""
    pair: dict = {
        "chainId": chain,
        "pairAddress": address,
        "priceUsd": price,
        "priceChange": {"h24": h24} if h24 is not None else {},
        "baseToken": {"symbol": base_symbol, "address": base_address or ""},
        "quoteToken": {"symbol": "WETH", "address": quote_address or ""},
    }
    if liquidity is not None:
        pair["liquidity"] = {"usd": liquidity}
    if created_at_ms is not None:
        pair["pairCreatedAt"] = created_at_ms
    if fdv is not None:
        pair["fdv"] = fdv
    return pair


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """Wrap *handler* in an httpx.MockTransport that records every request."""
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(_record), seen


def json_response(body, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=body)
