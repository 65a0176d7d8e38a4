"""Token registry — static card configuration and lookups."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import structlog

from flip_core.config.schema import AppConfig, TokenConfig
from flip_core.models.quote import PairRef
from flip_core.models.token import Token
from flip_core.quotes.resolver import parse_pair_link, sanitize_address

log = structlog.get_logger("token_registry")

DEFAULT_NETWORK = "base"

# Column names used by the spreadsheet export of the card list.
_COL_NAME = "CARD NAME / TOKEN NAME"
_COL_TICKER = "TICKER"
_COL_LINK = "GECKO TERMINAL POOL LINK"
_COL_IMAGE = "IMAGE NAME"


def sanitize_id(raw: str) -> str:
    base = (raw or "").lower().lstrip("$")
    return re.sub(r"[^a-z0-9]+", "", base)


def row_to_token(row: dict[str, Any]) -> Token | None:
    """Convert one spreadsheet row into a Token; None if it has no usable id."""
    name = str(row.get(_COL_NAME) or row.get("name") or "").strip()
    symbol = str(row.get(_COL_TICKER) or row.get("symbol") or "").replace("$", "").strip().upper()
    image = str(row.get(_COL_IMAGE) or row.get("image") or "").strip()
    link = str(row.get(_COL_LINK) or row.get("pair") or "").strip()

    image_id = sanitize_id(re.sub(r"\.[a-z0-9]+$", "", image.split("/")[-1], flags=re.I))
    token_id = sanitize_id(symbol) or image_id or sanitize_id(name)
    if not token_id:
        return None

    pair = sanitize_address(link)
    return Token(
        id=token_id,
        symbol=symbol or token_id.upper(),
        name=name or symbol or token_id,
        network=DEFAULT_NETWORK,
        pair_address=pair,
        dexscreener_url=f"https://dexscreener.com/{DEFAULT_NETWORK}/{pair}" if pair else None,
    )


def load_token_list(path: str | Path) -> list[Token]:
    """Read a JSON card list (``{"Sayfa1": [...]}`` export or a bare list)."""
    p = Path(path)
    if not p.exists():
        log.warning("token_list_missing", path=str(p))
        return []
    with open(p) as f:
        data = json.load(f)
    rows = data.get("Sayfa1", []) if isinstance(data, dict) else data
    if not isinstance(rows, list):
        return []
    tokens = []
    for row in rows:
        if isinstance(row, dict):
            token = row_to_token(row)
            if token is not None:
                tokens.append(token)
    return tokens


def _from_config(tc: TokenConfig) -> Token:
    return Token(
        id=tc.id.lower(),
        symbol=tc.symbol.upper(),
        name=tc.name or tc.symbol,
        network=tc.network.lower(),
        pair_address=tc.pair,
        dexscreener_url=tc.url,
    )


class TokenRegistry:
    """All playable tokens keyed by lowercase id."""

    def __init__(self, tokens: Iterable[Token], aliases: dict[str, str] | None = None) -> None:
        self._tokens: dict[str, Token] = {}
        for t in tokens:
            self._tokens.setdefault(t.id.lower(), t)
        self._aliases = {k.lower(): v.lower() for k, v in (aliases or {}).items()}

    @classmethod
    def from_config(cls, config: AppConfig) -> TokenRegistry:
        tokens = [_from_config(tc) for tc in config.tokens]
        if config.token_list_path:
            tokens.extend(load_token_list(config.token_list_path))
        return cls(tokens, aliases=config.token_aliases)

    def __iter__(self) -> Iterator[Token]:
        return iter(self._tokens.values())

    def __len__(self) -> int:
        return len(self._tokens)

    def get(self, token_id: str) -> Token | None:
        if not token_id:
            return None
        key = token_id.lower()
        return self._tokens.get(key) or self._tokens.get(self._aliases.get(key, ""))

    def find(self, query: str) -> Token | None:
        """Loose lookup by id, name or ticker, then by substring."""
        q = (query or "").strip().lower().lstrip("$")
        if not q:
            return None
        token = self.get(q)
        if token is not None:
            return token
        for t in self._tokens.values():
            if t.name.lower() == q or t.symbol.lower() == q:
                return t
        for t in self._tokens.values():
            if q in t.name.lower() or q in t.symbol.lower():
                return t
        return None

    def explicit_pair(self, token: Token) -> PairRef | None:
        """Configured pair for *token* without any network lookup."""
        addr = sanitize_address(token.pair_address)
        if addr:
            return PairRef.of(token.network, addr)
        link = parse_pair_link(token.dexscreener_url)
        if link.pair:
            return PairRef.of(link.network or token.network, link.pair)
        return None

    def explicit_pairs(self) -> list[tuple[Token, PairRef]]:
        out = []
        for t in self._tokens.values():
            ref = self.explicit_pair(t)
            if ref is not None:
                out.append((t, ref))
        return out
