"""GeckoTerminal client — secondary, pool-level quote provider.

  GET /networks/{network}/pools/{pool}
    -> {"data": {"attributes": {"base_token_price_usd", "quote_token_price_usd",
                                "base_token": {"symbol"}, "quote_token": {"symbol"},
                                "price_change_percentage": {"h24"}}}}

Only consulted when Dexscreener has nothing. Everything except HTTP 429
resolves to None.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from flip_core.errors import RateLimitedError
from flip_core.models.quote import Quote
from flip_core.providers.dexscreener import _safe_get, _to_float, default_headers

PROVIDER = "geckoterminal"

log = structlog.get_logger("geckoterminal")


def pick_price_by_symbol(attrs: dict, symbol: str | None) -> float | None:
    """Choose which leg's USD price describes *symbol*.

    Matching leg first, then the base leg, then the quote leg.
    """
    base_usd = _to_float(attrs.get("base_token_price_usd"))
    quote_usd = _to_float(attrs.get("quote_token_price_usd"))

    if symbol:
        s = symbol.upper()
        base_sym = str(_safe_get(attrs, "base_token.symbol") or "").upper()
        quote_sym = str(_safe_get(attrs, "quote_token.symbol") or "").upper()
        if s == base_sym and base_usd is not None:
            return base_usd
        if s == quote_sym and quote_usd is not None:
            return quote_usd

    if base_usd is not None:
        return base_usd
    return quote_usd


def parse_pool(network: str, pool: str, body: Any, symbol: str | None) -> Quote | None:
    attrs = _safe_get(body, "data.attributes")
    if not isinstance(attrs, dict):
        return None
    price = pick_price_by_symbol(attrs, symbol)
    if price is None or price <= 0:
        return None
    change = _to_float(_safe_get(attrs, "price_change_percentage.h24"))
    if change is None:
        change = _to_float(_safe_get(attrs, "price_change.h24"))
    return Quote(
        network=network.lower(),
        pair_address=pool.lower(),
        price_usd=price,
        change_pct_24h=change,
        liquidity_usd=_to_float(attrs.get("reserve_in_usd")),
        fdv_usd=_to_float(attrs.get("fdv_usd")),
        fetched_at_ms=int(time.time() * 1000),
        raw=body,
    )


class GeckoTerminalClient:
    """Async client for the GeckoTerminal pools endpoint."""

    name = PROVIDER

    def __init__(
        self,
        base_url: str = "https://api.geckoterminal.com/api/v2",
        timeout: float = 15.0,
        user_agent: str = "FlipRoyale/1.0 (+https://fliproyale.xyz)",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = default_headers(user_agent)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    async def fetch_pool_quote(
        self,
        network: str,
        pool_address: str,
        symbol_hint: str | None = None,
    ) -> Quote | None:
        if not network or not pool_address:
            return None
        net = network.lower()
        pool = pool_address.lower()
        http = await self._get_http()
        try:
            resp = await http.get(f"{self.base_url}/networks/{net}/pools/{pool}")
        except httpx.HTTPError as exc:
            log.warning("gecko_request_failed", network=net, pool=pool, error=str(exc))
            return None

        if resp.status_code == 429:
            raise RateLimitedError(PROVIDER)
        if not resp.is_success:
            return None
        try:
            body = resp.json()
        except ValueError:
            log.warning("gecko_malformed_body", network=net, pool=pool)
            return None
        return parse_pool(net, pool, body, symbol_hint)
