"""Dexscreener client — primary quote provider.

Public API, no authentication:
  GET /latest/dex/pairs/{network}/{addr[,addr...]}  -> {"pairs": [...]} or {"pair": {...}}
  GET /latest/dex/tokens/{network}/{token}          -> {"pairs": [...]}
  GET /latest/dex/tokens/{token}                    -> {"pairs": [...]}  (all chains)
  GET /latest/dex/search?q={query}                  -> {"pairs": [...]}

HTTP 429 raises RateLimitedError; network errors, 5xx and unparseable bodies
raise UpstreamUnavailableError. Any other non-2xx is treated as "no data".
"""

from __future__ import annotations

import math
import time
from typing import Any

import httpx

from flip_core.errors import RateLimitedError, UpstreamUnavailableError
from flip_core.models.quote import Quote

PROVIDER = "dexscreener"

# Fallback order when the 24h change is missing.
_CHANGE_WINDOWS = ("h24", "h6", "h1", "m5")


def default_headers(user_agent: str) -> dict[str, str]:
    return {"accept": "application/json", "user-agent": user_agent}


def _safe_get(d: Any, path: str, default: Any = None) -> Any:
    cur = d
    for key in path.split("."):
        if not isinstance(cur, dict) or key not in cur:
            return default
        cur = cur[key]
    return cur


def _to_float(x: Any) -> float | None:
    if x is None or isinstance(x, bool):
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_pair(network: str, item: Any, fetched_at_ms: int | None = None) -> Quote | None:
    """Normalize one Dexscreener pair object, or None if it has no usable price."""
    if not isinstance(item, dict):
        return None
    addr = str(item.get("pairAddress") or "").strip().lower()
    price = _to_float(item.get("priceUsd"))
    if not addr or price is None or price <= 0:
        return None

    change = None
    for window in _CHANGE_WINDOWS:
        change = _to_float(_safe_get(item, f"priceChange.{window}"))
        if change is not None:
            break

    fdv_raw = item.get("fdv")
    fdv = _to_float(fdv_raw.get("usd") if isinstance(fdv_raw, dict) else fdv_raw)

    return Quote(
        network=network.lower(),
        pair_address=addr,
        price_usd=price,
        change_pct_24h=change,
        liquidity_usd=_to_float(_safe_get(item, "liquidity.usd")),
        fdv_usd=fdv if fdv is not None and fdv > 0 else None,
        fetched_at_ms=fetched_at_ms if fetched_at_ms is not None else _now_ms(),
        raw=item,
    )


def extract_pairs(body: Any) -> list[dict]:
    """Pull the pair list out of the response shapes Dexscreener uses."""
    if not isinstance(body, dict):
        return []
    pairs = body.get("pairs")
    if isinstance(pairs, list):
        return [p for p in pairs if isinstance(p, dict)]
    pair = body.get("pair")
    if isinstance(pair, dict):
        return [pair]
    return []


class DexscreenerClient:
    """Async client for the Dexscreener public API."""

    name = PROVIDER

    def __init__(
        self,
        base_url: str = "https://api.dexscreener.com",
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

    async def _get_json(self, path: str, params: dict | None = None) -> Any | None:
        http = await self._get_http()
        try:
            resp = await http.get(f"{self.base_url}{path}", params=params)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(PROVIDER, f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimitedError(PROVIDER)
        if resp.status_code >= 500:
            raise UpstreamUnavailableError(
                PROVIDER, f"HTTP {resp.status_code}", status=resp.status_code,
            )
        if not resp.is_success:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(PROVIDER, "malformed JSON body") from exc

    # --- Quotes ---

    async def fetch_quotes_batch(self, network: str, addresses: list[str]) -> dict[str, Quote]:
        """Fetch many pairs on one network in a single call, keyed by lowercased address."""
        if not addresses:
            return {}
        net = network.lower()
        body = await self._get_json(f"/latest/dex/pairs/{net}/{','.join(addresses)}")
        now = _now_ms()
        out: dict[str, Quote] = {}
        for item in extract_pairs(body):
            quote = parse_pair(net, item, now)
            if quote is not None:
                out[quote.pair_address] = quote
        return out

    async def fetch_quote(self, network: str, address: str) -> Quote | None:
        """Fetch exactly one pair. Returns None if the provider has no such pair."""
        net = network.lower()
        addr = address.lower()
        body = await self._get_json(f"/latest/dex/pairs/{net}/{addr}")
        now = _now_ms()
        for item in extract_pairs(body):
            quote = parse_pair(net, item, now)
            if quote is not None and quote.pair_address == addr:
                return quote
        return None

    # --- Discovery ---

    async def fetch_token_pairs(self, network: str, token_address: str) -> list[dict]:
        """All pairs trading *token_address* on one chain."""
        body = await self._get_json(f"/latest/dex/tokens/{network.lower()}/{token_address.lower()}")
        return extract_pairs(body)

    async def fetch_token_pairs_global(self, token_address: str) -> list[dict]:
        """All pairs trading *token_address* on any chain."""
        body = await self._get_json(f"/latest/dex/tokens/{token_address.lower()}")
        return extract_pairs(body)

    async def search(self, query: str) -> list[dict]:
        body = await self._get_json("/latest/dex/search", params={"q": query})
        return extract_pairs(body)
