"""PriceService — owns the quote cache, coalescer, resolver and provider clients."""

from __future__ import annotations

import structlog

from flip_core.config.schema import AppConfig
from flip_core.errors import QuoteFetchError, RateLimitedError
from flip_core.models.duel import Direction
from flip_core.models.quote import PairRef, Quote
from flip_core.models.token import Token
from flip_core.providers.dexscreener import DexscreenerClient
from flip_core.providers.geckoterminal import GeckoTerminalClient
from flip_core.providers.retry import RetryPolicy, call_with_retry
from flip_core.quotes.cache import ABSENT, QuoteCache
from flip_core.quotes.coalescer import RequestCoalescer
from flip_core.quotes.resolver import PairResolver

log = structlog.get_logger("price_service")


class PriceService:
    """One explicitly constructed quote pipeline.

    All shared quote state lives on the instance, so tests and separate
    callers each get an independent pipeline.
    """

    def __init__(
        self,
        dexscreener: DexscreenerClient | None = None,
        gecko: GeckoTerminalClient | None = None,
        cache: QuoteCache | None = None,
        retry_policy: RetryPolicy | None = None,
        flush_delay_s: float = 0.025,
        chunk_size: int = 30,
        search_spacing_s: float = 0.4,
    ) -> None:
        self.dexscreener = dexscreener or DexscreenerClient()
        self.gecko = gecko or GeckoTerminalClient()
        self.cache = cache or QuoteCache()
        self.retry_policy = retry_policy or RetryPolicy()
        self.resolver = PairResolver(self.dexscreener, search_spacing_s=search_spacing_s)
        self.coalescer = RequestCoalescer(
            self.dexscreener,
            self.cache,
            self.resolver,
            retry_policy=self.retry_policy,
            flush_delay_s=flush_delay_s,
            chunk_size=chunk_size,
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> PriceService:
        q = config.quotes
        dex_cfg = config.provider("dexscreener")
        gecko_cfg = config.provider("geckoterminal")
        return cls(
            dexscreener=DexscreenerClient(
                base_url=dex_cfg.base_url, timeout=dex_cfg.timeout_s, user_agent=q.user_agent,
            ),
            gecko=GeckoTerminalClient(
                base_url=gecko_cfg.base_url, timeout=gecko_cfg.timeout_s, user_agent=q.user_agent,
            ),
            cache=QuoteCache(hit_ttl_s=q.hit_ttl_s, miss_ttl_s=q.miss_ttl_s),
            retry_policy=RetryPolicy(
                max_attempts=q.max_attempts,
                rate_limit_base_s=q.rate_limit_base_delay_s,
                transient_step_s=q.transient_step_delay_s,
            ),
            flush_delay_s=q.flush_delay_s,
            chunk_size=q.chunk_size,
            search_spacing_s=q.search_spacing_s,
        )

    async def close(self) -> None:
        await self.coalescer.close()
        await self.dexscreener.close()
        await self.gecko.close()

    # ── Quotes ────────────────────────────────────────────────

    async def get_quote(self, network: str, pair_address: str) -> Quote | None:
        """Cached quote, else a coalesced fetch (which may map token -> pair).

        A token address mapped to a pool earlier reads that pool's cache
        entry. A remapped quote is never cached under the token address.

        Raises QuoteFetchError when the provider could not be reached.
        """
        if not network or not pair_address:
            return None
        ref = PairRef.of(network, pair_address)
        cached = self.cache.get(self.coalescer.mapped_pair(ref) or ref)
        if cached is not ABSENT:
            return cached
        return await self.coalescer.request_quote(ref.network, ref.pair_address)

    async def get_quote_strict(self, network: str, pair_address: str) -> Quote | None:
        """Quote for exactly this pool — no resolver, no token fallback, no batching."""
        if not network or not pair_address:
            return None
        ref = PairRef.of(network, pair_address)
        cached = self.cache.get(ref)
        if cached is None or (cached is not ABSENT and cached.ref == ref):
            return cached
        quote = await call_with_retry(
            self.retry_policy,
            lambda: self.dexscreener.fetch_quote(ref.network, ref.pair_address),
            network=ref.network,
            pair=ref.pair_address,
            strict=True,
        )
        self.cache.put(ref, quote)
        return quote

    async def get_gecko_quote(
        self,
        network: str,
        pool_address: str,
        symbol_hint: str | None = None,
    ) -> Quote | None:
        try:
            return await self.gecko.fetch_pool_quote(network, pool_address, symbol_hint)
        except RateLimitedError:
            log.warning("gecko_rate_limited", network=network, pool=pool_address)
            return None

    async def quote_for_token(self, token: Token) -> Quote | None:
        """Resolve a token to a pair and quote it, falling back to GeckoTerminal.

        Fetch failures are logged and read as "no price".
        """
        ref = await self.resolver.resolve_pair(token)
        if ref is None:
            return None
        try:
            quote = await self.get_quote(ref.network, ref.pair_address)
        except QuoteFetchError as exc:
            log.warning("quote_fetch_failed", token_id=token.id, pair=ref.key, error=str(exc))
            quote = None
        if quote is not None and quote.change_pct_24h is not None:
            return quote
        gecko = await self.get_gecko_quote(ref.network, ref.pair_address, token.symbol)
        return gecko if gecko is not None else quote

    async def signed_change_pct(self, token: Token, direction: Direction) -> tuple[float, PairRef] | None:
        """Direction-applied 24h change for *token*, with the pair it came from."""
        quote = await self.quote_for_token(token)
        if quote is None or quote.change_pct_24h is None:
            return None
        pct = quote.change_pct_24h
        return (pct if direction == "up" else -pct), quote.ref
