"""Request coalescer — one upstream batch call per network per flush window.

Callers asking for quotes on the same network within ``flush_delay_s`` of
each other share a batch. The first caller arms the flush task; when it
fires the batch is detached (later callers start a new one), split into
chunks, and fetched sequentially. Every waiter in the batch is either
resolved with a quote / None or rejected with QuoteFetchError.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

from flip_core.errors import QuoteFetchError
from flip_core.models.quote import PairRef, Quote
from flip_core.providers.dexscreener import DexscreenerClient
from flip_core.providers.retry import RetryPolicy, call_with_retry
from flip_core.quotes.cache import QuoteCache
from flip_core.quotes.resolver import PairResolver, is_evm_address

log = structlog.get_logger("quote_coalescer")


@dataclass
class _PendingBatch:
    network: str
    # pair address -> futures awaiting it; dict order is request order
    waiters: dict[str, list[asyncio.Future]] = field(default_factory=dict)
    task: asyncio.Task | None = None


class RequestCoalescer:
    """Batch concurrent quote requests per network."""

    def __init__(
        self,
        client: DexscreenerClient,
        cache: QuoteCache,
        resolver: PairResolver,
        retry_policy: RetryPolicy | None = None,
        flush_delay_s: float = 0.025,
        chunk_size: int = 30,
    ) -> None:
        self._client = client
        self._cache = cache
        self._resolver = resolver
        self._retry = retry_policy or RetryPolicy()
        self._flush_delay_s = flush_delay_s
        self._chunk_size = chunk_size
        self._pending: dict[str, _PendingBatch] = {}
        self._flushing: set[asyncio.Task] = set()
        # token contract -> pool it was mapped to by the fallback lookup
        self._token_pairs: dict[PairRef, PairRef] = {}

    async def request_quote(self, network: str, pair_address: str) -> Quote | None:
        ref = PairRef.of(network, pair_address)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()

        batch = self._pending.get(ref.network)
        if batch is None:
            batch = _PendingBatch(network=ref.network)
            self._pending[ref.network] = batch
            batch.task = asyncio.create_task(self._flush_later(batch))
            self._flushing.add(batch.task)
            batch.task.add_done_callback(self._flushing.discard)
        batch.waiters.setdefault(ref.pair_address, []).append(fut)

        return await fut

    def mapped_pair(self, ref: PairRef) -> PairRef | None:
        """Pool a token address was last mapped to, if any."""
        return self._token_pairs.get(ref)

    async def close(self) -> None:
        """Cancel pending flushes; their waiters are cancelled too."""
        tasks = list(self._flushing)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        # a flush cancelled before its first step never reached its handler
        for batch in self._pending.values():
            for futs in batch.waiters.values():
                for fut in futs:
                    fut.cancel()
        self._pending.clear()

    # ── Flush ─────────────────────────────────────────────────

    async def _flush_later(self, batch: _PendingBatch) -> None:
        try:
            await asyncio.sleep(self._flush_delay_s)
            if self._pending.get(batch.network) is batch:
                del self._pending[batch.network]
            await self._flush(batch)
        except asyncio.CancelledError:
            if self._pending.get(batch.network) is batch:
                del self._pending[batch.network]
            for futs in batch.waiters.values():
                for fut in futs:
                    fut.cancel()
            raise
        except Exception as exc:
            log.exception("flush_failed", network=batch.network)
            err = QuoteFetchError(f"flush failed for {batch.network}: {exc}")
            for addr in list(batch.waiters):
                self._reject(batch, addr, err)

    async def _flush(self, batch: _PendingBatch) -> None:
        addresses = list(batch.waiters)
        log.debug("flush", network=batch.network, pairs=len(addresses))
        for i in range(0, len(addresses), self._chunk_size):
            await self._fetch_chunk(batch, addresses[i:i + self._chunk_size])

    async def _fetch_chunk(self, batch: _PendingBatch, chunk: list[str]) -> None:
        net = batch.network
        try:
            quotes = await call_with_retry(
                self._retry,
                lambda: self._client.fetch_quotes_batch(net, chunk),
                network=net,
                pairs=len(chunk),
            )
        except QuoteFetchError as exc:
            for addr in chunk:
                self._reject(batch, addr, exc)
            return

        unresolved: list[str] = []
        for addr in chunk:
            quote = quotes.get(addr)
            if quote is not None:
                self._cache.put(PairRef.of(net, addr), quote)
                self._resolve(batch, addr, quote)
            elif is_evm_address(addr):
                unresolved.append(addr)
            else:
                self._cache.put(PairRef.of(net, addr), None)
                self._resolve(batch, addr, None)

        for addr in unresolved:
            try:
                quote = await self._quote_via_token(net, addr)
            except QuoteFetchError as exc:
                self._reject(batch, addr, exc)
                continue
            # a remapped quote is cached under its own pool only
            if quote is None:
                self._cache.put(PairRef.of(net, addr), None)
            self._resolve(batch, addr, quote)

    async def _quote_via_token(self, network: str, token_address: str) -> Quote | None:
        """Treat an address missing from the batch as a token contract."""
        token_ref = PairRef.of(network, token_address)
        ref = self._token_pairs.get(token_ref)
        if ref is None:
            ref = await self._resolver.resolve_best_pair_for_token(network, token_address)
        if ref is None:
            return None
        self._token_pairs[token_ref] = ref
        quote = await call_with_retry(
            self._retry,
            lambda: self._client.fetch_quote(ref.network, ref.pair_address),
            network=ref.network,
            pair=ref.pair_address,
        )
        self._cache.put(ref, quote)
        if quote is not None:
            log.info("token_mapped_to_pair", network=network, token=token_address, pair=ref.pair_address)
        return quote

    # ── Waiters ───────────────────────────────────────────────

    @staticmethod
    def _resolve(batch: _PendingBatch, addr: str, quote: Quote | None) -> None:
        for fut in batch.waiters.pop(addr, []):
            if not fut.done():
                fut.set_result(quote)

    @staticmethod
    def _reject(batch: _PendingBatch, addr: str, error: BaseException) -> None:
        for fut in batch.waiters.pop(addr, []):
            if not fut.done():
                fut.set_exception(error)
