"""Tests for the RequestCoalescer — batching, chunking, fallback, rejection."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import dex_pair, json_response, mock_transport
from flip_core.errors import QuoteFetchError
from flip_core.models.quote import PairRef
from flip_core.providers.dexscreener import DexscreenerClient
from flip_core.providers.retry import RetryPolicy
from flip_core.quotes.cache import ABSENT, QuoteCache
from flip_core.quotes.coalescer import RequestCoalescer
from flip_core.quotes.resolver import PairResolver

NO_WAIT = RetryPolicy(rate_limit_base_s=0, transient_step_s=0)


def _addr(i: int) -> str:
    return f"0x{i:040x}"


def _coalescer(handler, chunk_size=30):
    transport, seen = mock_transport(handler)
    client = DexscreenerClient(transport=transport)
    cache = QuoteCache()
    resolver = PairResolver(client, search_spacing_s=0)
    coalescer = RequestCoalescer(
        client, cache, resolver, retry_policy=NO_WAIT, flush_delay_s=0.01, chunk_size=chunk_size,
    )
    return coalescer, cache, seen


def _batch_handler(request: httpx.Request) -> httpx.Response:
    """Echo every requested address back as a priced pair."""
    csv = request.url.path.rsplit("/", 1)[-1]
    return json_response({"pairs": [dex_pair(a, "1.5") for a in csv.split(",")]})


def _batch_paths(seen):
    return [r for r in seen if r.url.path.startswith("/latest/dex/pairs/")]


def _token_handler(token: str, pool: str):
    """*token* is not a pair; its only pool is *pool*, priced at 4.0."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == f"/latest/dex/pairs/base/{token}":
            return json_response({"pairs": []})
        if path == f"/latest/dex/tokens/base/{token}":
            return json_response({"pairs": [dex_pair(pool, base_address=token)]})
        if path == f"/latest/dex/pairs/base/{pool}":
            return json_response({"pair": dex_pair(pool, "4.0")})
        return httpx.Response(404)

    return handler


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_call(self):
        coalescer, cache, seen = _coalescer(_batch_handler)
        a = _addr(1)
        results = await asyncio.gather(*(coalescer.request_quote("base", a) for _ in range(10)))

        assert len(seen) == 1
        assert all(q is results[0] for q in results)
        assert results[0].price_usd == 1.5
        assert cache.get(PairRef.of("base", a)) is results[0]

    @pytest.mark.asyncio
    async def test_distinct_pairs_batched_into_one_call(self):
        coalescer, _, seen = _coalescer(_batch_handler)
        addrs = [_addr(i) for i in range(1, 6)]
        quotes = await asyncio.gather(*(coalescer.request_quote("BASE", a) for a in addrs))

        assert len(seen) == 1
        assert seen[0].url.path == f"/latest/dex/pairs/base/{','.join(addrs)}"
        assert [q.pair_address for q in quotes] == addrs

    @pytest.mark.asyncio
    async def test_networks_batch_separately(self):
        coalescer, _, seen = _coalescer(_batch_handler)
        await asyncio.gather(
            coalescer.request_quote("base", _addr(1)),
            coalescer.request_quote("ethereum", _addr(2)),
        )
        assert sorted(r.url.path.split("/")[4] for r in seen) == ["base", "ethereum"]

    @pytest.mark.asyncio
    async def test_every_chunk_is_fetched(self):
        coalescer, _, seen = _coalescer(_batch_handler, chunk_size=2)
        addrs = [_addr(i) for i in range(1, 6)]
        quotes = await asyncio.gather(*(coalescer.request_quote("base", a) for a in addrs))

        assert len(seen) == 3
        assert all(q is not None for q in quotes)

    @pytest.mark.asyncio
    async def test_later_request_starts_new_batch(self):
        coalescer, _, seen = _coalescer(_batch_handler)
        await coalescer.request_quote("base", _addr(1))
        await coalescer.request_quote("base", _addr(1))
        assert len(seen) == 2


class TestMissingAddresses:
    @pytest.mark.asyncio
    async def test_non_hex_address_resolves_none_and_is_cached(self):
        coalescer, cache, seen = _coalescer(lambda r: json_response({"pairs": []}))
        assert await coalescer.request_quote("solana", "So1anaPoolAddr") is None
        assert cache.get(PairRef.of("solana", "So1anaPoolAddr")) is None
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_hex_address_falls_back_to_token_lookup(self):
        token = _addr(7)
        pool = _addr(8)

        coalescer, cache, seen = _coalescer(_token_handler(token, pool))
        quote = await coalescer.request_quote("base", token)

        assert quote.pair_address == pool
        assert quote.price_usd == 4.0
        assert cache.get(PairRef.of("base", pool)) is quote
        assert cache.get(PairRef.of("base", token)) is ABSENT
        assert coalescer.mapped_pair(PairRef.of("base", token)) == PairRef.of("base", pool)

    @pytest.mark.asyncio
    async def test_known_mapping_skips_token_lookup(self):
        token = _addr(7)
        pool = _addr(8)

        coalescer, _, seen = _coalescer(_token_handler(token, pool))
        await coalescer.request_quote("base", token)
        await coalescer.request_quote("base", token)

        token_lookups = [r for r in seen if r.url.path.startswith("/latest/dex/tokens/")]
        assert len(token_lookups) == 1

    @pytest.mark.asyncio
    async def test_hex_address_with_no_pool_is_cached_miss(self):
        coalescer, cache, _ = _coalescer(lambda r: json_response({"pairs": []}))
        a = _addr(9)
        assert await coalescer.request_quote("base", a) is None
        assert cache.get(PairRef.of("base", a)) is None


class TestRejection:
    @pytest.mark.asyncio
    async def test_exhausted_retries_reject_all_waiters(self):
        coalescer, cache, seen = _coalescer(lambda r: httpx.Response(429))
        a, b = _addr(1), _addr(2)
        results = await asyncio.gather(
            coalescer.request_quote("base", a),
            coalescer.request_quote("base", a),
            coalescer.request_quote("base", b),
            return_exceptions=True,
        )

        assert all(isinstance(r, QuoteFetchError) for r in results)
        assert len(_batch_paths(seen)) == 3
        # failures are not cached as misses
        assert cache.get(PairRef.of("base", a)) is ABSENT

    @pytest.mark.asyncio
    async def test_transient_then_success(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(502)
            return _batch_handler(request)

        coalescer, _, _ = _coalescer(handler)
        q = await coalescer.request_quote("base", _addr(3))
        assert q is not None
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_only_failing_chunk_is_rejected(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] <= 3:
                return httpx.Response(500)
            return _batch_handler(request)

        coalescer, _, _ = _coalescer(handler, chunk_size=1)
        first, second = await asyncio.gather(
            coalescer.request_quote("base", _addr(1)),
            coalescer.request_quote("base", _addr(2)),
            return_exceptions=True,
        )
        assert isinstance(first, QuoteFetchError)
        assert second.pair_address == _addr(2)

    @pytest.mark.asyncio
    async def test_close_cancels_pending_waiters(self):
        coalescer, _, seen = _coalescer(_batch_handler)
        coalescer._flush_delay_s = 10
        task = asyncio.create_task(coalescer.request_quote("base", _addr(1)))
        await asyncio.sleep(0)
        await coalescer.close()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert seen == []
