"""PriceOrchestrator — background poller keeping the live price of every tracked token.

Run: python -m flip_core.orchestrator [--config config.yaml]
"""

from __future__ import annotations

import argparse
import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from flip_core.config.loader import load_config
from flip_core.config.schema import AppConfig
from flip_core.errors import QuoteFetchError
from flip_core.logging.setup import setup_logging
from flip_core.models.price import CachedPrice, LivePrice, PriceSource
from flip_core.models.quote import PairRef, Quote
from flip_core.quotes.service import PriceService
from flip_core.tokens.registry import TokenRegistry

log = structlog.get_logger("price_orchestrator")

DEFAULT_POLL_INTERVAL_S = 60.0


def derive_baseline(current_price: float, change_pct: float | None) -> float:
    """Price 24h ago implied by the current price and its 24h change.

    Falls back to the current price (no synthetic move) when the change is
    missing, non-finite, exactly zero or at/below -100%.
    """
    if change_pct is None or not math.isfinite(change_pct) or change_pct == 0 or change_pct <= -100:
        return current_price
    baseline = current_price / (1 + change_pct / 100)
    return baseline if baseline > 0 else current_price


@dataclass(frozen=True)
class PairSpec:
    token_id: str
    symbol: str
    ref: PairRef


class PriceOrchestrator:
    """Polls every explicitly configured pair and serves the last known price."""

    def __init__(
        self,
        service: PriceService,
        registry: TokenRegistry,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        min_poll_interval_s: float = 15.0,
        virtual_token_id: str | None = None,
    ) -> None:
        self._service = service
        self._registry = registry
        if poll_interval_s < min_poll_interval_s:
            log.warning(
                "poll_interval_below_floor",
                requested_s=poll_interval_s,
                floor_s=min_poll_interval_s,
                using_s=DEFAULT_POLL_INTERVAL_S,
            )
            poll_interval_s = DEFAULT_POLL_INTERVAL_S
        self.poll_interval_s = poll_interval_s
        self._virtual_id = (virtual_token_id or "").strip().lower() or None
        self._virtual_price_usd: float = 0.0

        self._pairs: list[PairSpec] = [
            PairSpec(token_id=t.id, symbol=t.symbol, ref=ref)
            for t, ref in registry.explicit_pairs()
        ]
        self._prices: dict[str, CachedPrice] = {}
        self._task: asyncio.Task | None = None
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        service: PriceService,
        registry: TokenRegistry,
    ) -> PriceOrchestrator:
        oc = config.orchestrator
        return cls(
            service,
            registry,
            poll_interval_s=oc.poll_interval_s,
            min_poll_interval_s=oc.min_poll_interval_s,
            virtual_token_id=oc.virtual_token_id,
        )

    @property
    def tracked_pairs(self) -> list[PairSpec]:
        return list(self._pairs)

    @property
    def virtual_price_usd(self) -> float:
        return self._virtual_price_usd

    # ── Public API ────────────────────────────────────────────

    def get_one(self, token_id: str) -> CachedPrice | None:
        """Cached price for *token_id*, rescaled by the virtual token's USD price."""
        cached = self._prices.get(token_id.lower())
        if cached is None:
            return None
        if (
            self._virtual_id is None
            or cached.token_id.lower() == self._virtual_id
            or self._virtual_price_usd <= 0
        ):
            return cached
        m = self._virtual_price_usd
        return cached.model_copy(update={
            "price_usd": cached.price_usd * m,
            "baseline_price": cached.baseline_price * m,
            "fdv_usd": cached.fdv_usd * m if cached.fdv_usd else None,
        })

    def get_all(self) -> list[CachedPrice]:
        return [p for p in (self.get_one(tid) for tid in list(self._prices)) if p is not None]

    def get_live_price(self, token_id: str) -> LivePrice | None:
        cached = self.get_one(token_id)
        return LivePrice.from_cached(cached) if cached is not None else None

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start the poll loop. Calling it again while running is a no-op."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info(
            "price_orchestrator_started",
            pairs=len(self._pairs),
            interval_s=self.poll_interval_s,
            virtual_token=self._virtual_id or "not set",
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("price_orchestrator_stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except Exception:
                log.exception("poll_failed")
            await asyncio.sleep(self.poll_interval_s)

    # ── Polling ───────────────────────────────────────────────

    async def poll_once(self) -> None:
        """One tick: the virtual token first, then every other tracked pair."""
        if self._virtual_id is not None:
            spec = next((s for s in self._pairs if s.token_id.lower() == self._virtual_id), None)
            if spec is None:
                log.warning("virtual_token_not_tracked", token_id=self._virtual_id)
            else:
                entry = await self._poll_one(spec)
                if entry is not None and entry.price_usd > 0:
                    self._virtual_price_usd = entry.price_usd
                    log.debug("virtual_price_updated", price_usd=entry.price_usd)
                else:
                    log.warning("virtual_price_unavailable", keeping=self._virtual_price_usd)

        for spec in self._pairs:
            if spec.token_id.lower() == self._virtual_id:
                continue
            await self._poll_one(spec)

    async def _poll_one(self, spec: PairSpec) -> CachedPrice | None:
        ref = spec.ref
        source: PriceSource = "dexscreener"
        quote: Quote | None
        try:
            quote = await self._service.get_quote_strict(ref.network, ref.pair_address)
        except QuoteFetchError as exc:
            log.warning("strict_quote_failed", token_id=spec.token_id, pair=ref.key, error=str(exc))
            quote = None

        if quote is None:
            source = "geckoterminal"
            quote = await self._service.get_gecko_quote(ref.network, ref.pair_address, spec.symbol)

        if quote is None:
            log.warning("price_unavailable", token_id=spec.token_id, symbol=spec.symbol, pair=ref.key)
            return None

        entry = CachedPrice(
            token_id=spec.token_id,
            symbol=spec.symbol,
            price_usd=quote.price_usd,
            baseline_price=derive_baseline(quote.price_usd, quote.change_pct_24h),
            change_pct=quote.change_pct_24h,
            fdv_usd=quote.fdv_usd,
            as_of=datetime.fromtimestamp(quote.fetched_at_ms / 1000, tz=timezone.utc),
            source=source,
            network=ref.network,
            pair_address=ref.pair_address,
            view_url=ref.view_url,
        )
        self._prices[spec.token_id.lower()] = entry
        return entry


async def run(config_path: str | None = None) -> None:
    """Standalone poller — logs prices until interrupted."""
    cfg = load_config(config_path)
    setup_logging(
        level=cfg.logging.level,
        log_format=cfg.logging.format,
        component_levels=cfg.logging.components,
    )

    service = PriceService.from_config(cfg)
    registry = TokenRegistry.from_config(cfg)
    orchestrator = PriceOrchestrator.from_config(cfg, service, registry)

    await orchestrator.start()
    try:
        while True:
            await asyncio.sleep(orchestrator.poll_interval_s)
            log.info("price_snapshot", tokens=len(orchestrator.get_all()))
    finally:
        await orchestrator.stop()
        await service.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Token price poller")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    args = parser.parse_args()
    asyncio.run(run(args.config))


if __name__ == "__main__":
    main()
