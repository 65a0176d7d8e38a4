"""Pair resolution — token -> concrete (network, pool address).

Resolution order for a configured token:
  1. explicit network + pair address (sanitized, never searched)
  2. a configured Dexscreener / GeckoTerminal link, parsed positionally,
     then via ``chainId`` / ``pairAddress`` query parameters
  3. upstream search by symbol, then by name, scored by liquidity,
     network and symbol match, and pair age

Searches are serialized behind one lock with a minimum spacing so that
concurrent resolves queue instead of bursting the provider.
"""

from __future__ import annotations

import asyncio
import math
import re
import time
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

import structlog

from flip_core.errors import UpstreamError
from flip_core.models.quote import PairRef
from flip_core.models.token import Token
from flip_core.providers.dexscreener import DexscreenerClient, _safe_get, _to_float

log = structlog.get_logger("pair_resolver")

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")

NETWORK_MATCH_BONUS = 20.0
EXACT_SYMBOL_BONUS = 50.0
LENIENT_SYMBOL_BONUS = 5.0
MAX_AGE_DAYS = 365
_MS_PER_DAY = 86_400_000


def sanitize_address(raw: str | None) -> str | None:
    """Return the first 0x-prefixed 40-hex address found anywhere in *raw*, lowercased."""
    if not raw:
        return None
    match = _ADDRESS_RE.search(raw)
    return match.group(0).lower() if match else None


def is_evm_address(value: str | None) -> bool:
    return bool(value) and _ADDRESS_RE.fullmatch(value) is not None


@dataclass(frozen=True)
class PairLink:
    network: str | None = None
    pair: str | None = None


def parse_pair_link(url: str | None) -> PairLink:
    """Extract network + pair from a provider link.

    Known layouts:
        https://dexscreener.com/{network}/{pair}
        https://api.dexscreener.com/latest/dex/pairs/{network}/{pair}
        https://www.geckoterminal.com/{network}/pools/{pair}
        https://api.geckoterminal.com/api/v2/networks/{network}/pools/{pair}
    falling back to ``?chainId=...&pairAddress=...``.
    """
    if not url:
        return PairLink()
    parsed = urlparse(url.strip())
    if not parsed.netloc:
        return PairLink()

    parts = [p for p in parsed.path.split("/") if p]
    network: str | None = None
    raw_pair: str | None = None

    if "pairs" in parts:
        i = parts.index("pairs")
        if len(parts) > i + 2:
            network, raw_pair = parts[i + 1], parts[i + 2]
    elif "pools" in parts:
        i = parts.index("pools")
        if i >= 1 and len(parts) > i + 1:
            network, raw_pair = parts[i - 1], parts[i + 1]
    elif len(parts) >= 2:
        network, raw_pair = parts[0], parts[1]

    pair = sanitize_address(raw_pair)
    if pair:
        return PairLink(network=network.lower() if network else None, pair=pair)

    qs = parse_qs(parsed.query)
    q_pair = sanitize_address((qs.get("pairAddress") or [None])[0])
    if q_pair:
        q_net = (qs.get("chainId") or [None])[0]
        return PairLink(network=q_net.lower() if q_net else network, pair=q_pair)
    return PairLink()


def score_pair(
    pair: dict,
    symbol: str,
    network: str | None,
    lenient: bool = False,
    now_ms: int | None = None,
) -> float | None:
    """Score one search result. None means the candidate is rejected."""
    sym = symbol.upper()
    base_sym = str(_safe_get(pair, "baseToken.symbol") or "").upper()

    if sym and base_sym == sym:
        score = EXACT_SYMBOL_BONUS
    elif lenient and sym and sym in base_sym:
        score = LENIENT_SYMBOL_BONUS
    else:
        return None

    liquidity = _to_float(_safe_get(pair, "liquidity.usd"))
    if liquidity is not None and liquidity > 1:
        score += math.log10(liquidity)

    if network and str(pair.get("chainId") or "").lower() == network.lower():
        score += NETWORK_MATCH_BONUS

    created = _to_float(pair.get("pairCreatedAt"))
    if created is not None and created > 0:
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        age_days = max(0.0, (now - created) / _MS_PER_DAY)
        score += min(age_days, MAX_AGE_DAYS) / MAX_AGE_DAYS

    return score


def pick_best_pair(pairs: list[dict], symbol: str, network: str | None) -> dict | None:
    """Best search result on *network*; a lenient re-score runs if nothing matches strictly."""
    if network:
        pairs = [p for p in pairs if str(p.get("chainId") or "").lower() == network.lower()]
    pairs = [p for p in pairs if p.get("pairAddress")]

    for lenient in (False, True):
        scored = []
        for p in pairs:
            s = score_pair(p, symbol, network, lenient=lenient)
            if s is not None and s > 0:
                scored.append((s, p))
        if scored:
            return max(scored, key=lambda sp: sp[0])[1]
    return None


def _is_token_candidate(pair: dict, network: str) -> bool:
    return (
        str(pair.get("chainId") or "").lower() == network
        and is_evm_address(str(pair.get("pairAddress") or ""))
        and _to_float(_safe_get(pair, "liquidity.usd")) is not None
    )


def _token_is_leg(pair: dict, token_address: str) -> bool:
    base = str(_safe_get(pair, "baseToken.address") or "").lower()
    quote = str(_safe_get(pair, "quoteToken.address") or "").lower()
    return token_address in (base, quote)


class PairResolver:
    """Resolve tokens to pairs; owns the serialized search chain."""

    def __init__(self, client: DexscreenerClient, search_spacing_s: float = 0.4) -> None:
        self._client = client
        self._spacing_s = search_spacing_s
        self._search_lock = asyncio.Lock()
        self._last_search_at: float | None = None
        self._resolved: dict[str, PairRef] = {}

    async def search(self, query: str) -> list[dict]:
        """Run one upstream search behind the global search chain.

        Upstream failures are logged and resolve to an empty result.
        """
        async with self._search_lock:
            if self._last_search_at is not None:
                wait = self._spacing_s - (time.monotonic() - self._last_search_at)
                if wait > 0:
                    await asyncio.sleep(wait)
            try:
                return await self._client.search(query)
            except UpstreamError as exc:
                log.warning("search_failed", query=query, error=str(exc))
                return []
            finally:
                self._last_search_at = time.monotonic()

    async def resolve_pair(self, token: Token) -> PairRef | None:
        if token.pair_address:
            addr = sanitize_address(token.pair_address)
            if addr is None:
                log.warning("invalid_pair_config", token_id=token.id, raw=token.pair_address)
                return None
            return PairRef.of(token.network, addr)

        if token.dexscreener_url:
            link = parse_pair_link(token.dexscreener_url)
            if link.pair:
                return PairRef.of(link.network or token.network, link.pair)

        cached = self._resolved.get(token.id)
        if cached is not None:
            return cached

        for query in (token.symbol, token.name):
            if not query:
                continue
            best = pick_best_pair(await self.search(query), token.symbol, token.network)
            if best is not None:
                ref = PairRef.of(str(best.get("chainId") or token.network), str(best["pairAddress"]))
                self._resolved[token.id] = ref
                log.info("pair_resolved_by_search", token_id=token.id, query=query, pair=ref.key)
                return ref

        log.info("pair_not_found", token_id=token.id, symbol=token.symbol)
        return None

    async def resolve_best_pair_for_token(self, network: str, token_address: str) -> PairRef | None:
        """Find the most liquid pool trading a token contract on *network*."""
        net = network.lower()
        token = token_address.lower()

        async def _chain() -> list[dict]:
            return await self._client.fetch_token_pairs(net, token)

        async def _global() -> list[dict]:
            return await self._client.fetch_token_pairs_global(token)

        async def _search() -> list[dict]:
            return await self.search(token)

        candidates: list[dict] = []
        for stage in (_chain, _global, _search):
            try:
                pairs = await stage()
            except UpstreamError as exc:
                log.warning("token_lookup_failed", network=net, token=token, error=str(exc))
                continue
            candidates.extend(p for p in pairs if _is_token_candidate(p, net))
            if candidates:
                break

        if not candidates:
            return None

        best = max(
            candidates,
            key=lambda p: (
                _token_is_leg(p, token),
                _to_float(_safe_get(p, "liquidity.usd")) or 0.0,
            ),
        )
        return PairRef.of(net, str(best["pairAddress"]))
