"""Tests for pair resolution — sanitizing, link parsing, search scoring."""

from __future__ import annotations

import asyncio
import time

import httpx
import pytest

from conftest import dex_pair, json_response, mock_transport
from flip_core.models.quote import PairRef
from flip_core.models.token import Token
from flip_core.providers.dexscreener import DexscreenerClient
from flip_core.quotes.resolver import (
    PairResolver,
    parse_pair_link,
    pick_best_pair,
    sanitize_address,
    score_pair,
)

P1 = "0x" + "a1" * 20
P2 = "0x" + "b2" * 20
P3 = "0x" + "c3" * 20
TOKEN = "0x" + "d4" * 20


# ── Pure helpers ──────────────────────────────────────────────


class TestSanitizeAddress:
    def test_extracts_from_url(self):
        assert sanitize_address(f"https://www.geckoterminal.com/base/pools/{P1.upper().replace('0X', '0x')}?x=1") == P1

    def test_extracts_from_prefixed_value(self):
        assert sanitize_address(f"pools/{P1}") == P1

    def test_rejects_short_or_empty(self):
        assert sanitize_address("0x1234") is None
        assert sanitize_address("") is None
        assert sanitize_address(None) is None


class TestParsePairLink:
    @pytest.mark.parametrize("url,network", [
        (f"https://dexscreener.com/base/{P1}", "base"),
        (f"https://api.dexscreener.com/latest/dex/pairs/ethereum/{P1}", "ethereum"),
        (f"https://www.geckoterminal.com/base/pools/{P1}", "base"),
        (f"https://api.geckoterminal.com/api/v2/networks/base/pools/{P1}", "base"),
    ])
    def test_known_layouts(self, url, network):
        link = parse_pair_link(url)
        assert link.pair == P1
        assert link.network == network

    def test_query_string_fallback(self):
        link = parse_pair_link(f"https://example.com/view?chainId=Base&pairAddress={P2}")
        assert link.pair == P2
        assert link.network == "base"

    def test_garbage(self):
        assert parse_pair_link("not a url").pair is None
        assert parse_pair_link(None).pair is None
        assert parse_pair_link("https://dexscreener.com/base/degen").pair is None


class TestScorePair:
    def test_exact_symbol_network_liquidity(self):
        now = 1_000 * 86_400_000
        pair = dex_pair(P1, base_symbol="DEGEN", liquidity=10_000, created_at_ms=now - 365 * 86_400_000)
        score = score_pair(pair, "degen", "base", now_ms=now)
        assert score == pytest.approx(50 + 4 + 20 + 1)

    def test_symbol_mismatch_rejected_unless_lenient(self):
        pair = dex_pair(P1, base_symbol="DEGENX", liquidity=100)
        assert score_pair(pair, "DEGEN", "base") is None
        assert score_pair(pair, "DEGEN", "base", lenient=True) == pytest.approx(5 + 2 + 20)

    def test_unrelated_symbol_rejected_even_when_lenient(self):
        assert score_pair(dex_pair(P1, base_symbol="BRETT"), "DEGEN", "base", lenient=True) is None

    def test_age_capped_at_one(self):
        now = int(time.time() * 1000)
        old = dex_pair(P1, base_symbol="X", liquidity=None, created_at_ms=now - 5000 * 86_400_000)
        assert score_pair(old, "X", None, now_ms=now) == pytest.approx(51)


class TestPickBestPair:
    def test_prefers_liquidity_on_network(self):
        pairs = [
            dex_pair(P1, base_symbol="DEGEN", liquidity=1_000),
            dex_pair(P2, base_symbol="DEGEN", liquidity=1_000_000),
            dex_pair(P3, base_symbol="DEGEN", liquidity=1e9, chain="solana"),
        ]
        assert pick_best_pair(pairs, "DEGEN", "base")["pairAddress"] == P2

    def test_strict_beats_lenient(self):
        pairs = [
            dex_pair(P1, base_symbol="DEGEN2", liquidity=1e9),
            dex_pair(P2, base_symbol="DEGEN", liquidity=10),
        ]
        assert pick_best_pair(pairs, "DEGEN", "base")["pairAddress"] == P2

    def test_lenient_pass_when_no_exact_match(self):
        pairs = [dex_pair(P1, base_symbol="WDEGEN", liquidity=10)]
        assert pick_best_pair(pairs, "DEGEN", "base")["pairAddress"] == P1

    def test_nothing(self):
        assert pick_best_pair([dex_pair(P1, base_symbol="BRETT")], "DEGEN", "base") is None


# ── PairResolver ──────────────────────────────────────────────


def _resolver(handler, spacing=0.0):
    transport, seen = mock_transport(handler)
    client = DexscreenerClient(transport=transport)
    return PairResolver(client, search_spacing_s=spacing), seen


class TestResolvePair:
    @pytest.mark.asyncio
    async def test_explicit_pair_never_searches(self):
        resolver, seen = _resolver(lambda r: json_response({"pairs": []}))
        token = Token(id="degen", symbol="DEGEN", name="Degen", pair_address=f"pools/{P1}")
        assert await resolver.resolve_pair(token) == PairRef.of("base", P1)
        assert seen == []

    @pytest.mark.asyncio
    async def test_invalid_explicit_pair_is_none_without_search(self):
        resolver, seen = _resolver(lambda r: json_response({"pairs": []}))
        token = Token(id="degen", symbol="DEGEN", name="Degen", pair_address="tbd")
        assert await resolver.resolve_pair(token) is None
        assert seen == []

    @pytest.mark.asyncio
    async def test_link(self):
        resolver, seen = _resolver(lambda r: json_response({"pairs": []}))
        token = Token(id="degen", symbol="DEGEN", name="Degen",
                      dexscreener_url=f"https://dexscreener.com/arbitrum/{P2}")
        assert await resolver.resolve_pair(token) == PairRef.of("arbitrum", P2)
        assert seen == []

    @pytest.mark.asyncio
    async def test_search_symbol_then_name_and_memoize(self):
        def handler(request):
            if request.url.params["q"] == "Degen Token":
                return json_response({"pairs": [dex_pair(P3, base_symbol="DEGEN")]})
            return json_response({"pairs": []})

        resolver, seen = _resolver(handler)
        token = Token(id="degen", symbol="DEGEN", name="Degen Token")
        ref = await resolver.resolve_pair(token)
        assert ref == PairRef.of("base", P3)
        assert [r.url.params["q"] for r in seen] == ["DEGEN", "Degen Token"]

        assert await resolver.resolve_pair(token) == ref
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_search_failure_reads_as_not_found(self):
        resolver, _ = _resolver(lambda r: httpx.Response(503))
        token = Token(id="degen", symbol="DEGEN", name="Degen")
        assert await resolver.resolve_pair(token) is None


class TestSearchChain:
    @pytest.mark.asyncio
    async def test_searches_are_serialized_and_spaced(self):
        stamps: list[float] = []

        def handler(request):
            stamps.append(time.monotonic())
            return json_response({"pairs": []})

        resolver, _ = _resolver(handler, spacing=0.05)
        await asyncio.gather(*(resolver.search(q) for q in ("a", "b", "c")))

        assert len(stamps) == 3
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        assert all(g >= 0.045 for g in gaps)


class TestResolveBestPairForToken:
    @pytest.mark.asyncio
    async def test_chain_stage_wins_and_prefers_token_leg(self):
        pairs = [
            dex_pair(P1, liquidity=1e9),
            dex_pair(P2, liquidity=10, base_address=TOKEN),
        ]
        resolver, seen = _resolver(lambda r: json_response({"pairs": pairs}))
        ref = await resolver.resolve_best_pair_for_token("base", TOKEN)
        assert ref == PairRef.of("base", P2)
        assert seen[0].url.path == f"/latest/dex/tokens/base/{TOKEN}"
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_falls_through_to_global_then_search(self):
        def handler(request):
            path = request.url.path
            if path.startswith("/latest/dex/tokens/base/"):
                return json_response({"pairs": []})
            if path.startswith("/latest/dex/tokens/"):
                # wrong chain only
                return json_response({"pairs": [dex_pair(P1, chain="ethereum")]})
            return json_response({"pairs": [dex_pair(P3, liquidity=5, quote_address=TOKEN)]})

        resolver, seen = _resolver(handler)
        assert await resolver.resolve_best_pair_for_token("BASE", TOKEN) == PairRef.of("base", P3)
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_candidates_need_liquidity(self):
        resolver, _ = _resolver(lambda r: json_response({"pairs": [dex_pair(P1, liquidity=None)]}))
        assert await resolver.resolve_best_pair_for_token("base", TOKEN) is None

    @pytest.mark.asyncio
    async def test_stage_failure_moves_on(self):
        def handler(request):
            if request.url.path.startswith("/latest/dex/tokens/base/"):
                return httpx.Response(500)
            return json_response({"pairs": [dex_pair(P2)]})

        resolver, _ = _resolver(handler)
        assert await resolver.resolve_best_pair_for_token("base", TOKEN) == PairRef.of("base", P2)
