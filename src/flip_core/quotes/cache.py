"""In-memory quote cache with separate TTLs for hits and confirmed misses."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from flip_core.models.quote import PairRef, Quote


class _Absent:
    """Marker for "nothing usable cached" — distinct from a cached miss (None)."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Final = _Absent()


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheEntry:
    value: Quote | None
    expires_at_ms: int


class QuoteCache:
    """Maps PairRef -> quote or confirmed miss.

    Expired entries read as ABSENT and are left in place until the next
    ``put`` for the same pair overwrites them.
    """

    def __init__(
        self,
        hit_ttl_s: float = 45.0,
        miss_ttl_s: float = 60.0,
        clock: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._hit_ttl_ms = int(hit_ttl_s * 1000)
        self._miss_ttl_ms = int(miss_ttl_s * 1000)
        self._clock = clock
        self._store: dict[PairRef, CacheEntry] = {}

    def get(self, ref: PairRef) -> Quote | None | _Absent:
        """Return the cached quote, None for a cached miss, or ABSENT."""
        entry = self._store.get(ref)
        if entry is None or entry.expires_at_ms <= self._clock():
            return ABSENT
        return entry.value

    def put(self, ref: PairRef, quote: Quote | None) -> CacheEntry:
        """Record a quote (hit TTL) or a confirmed miss (miss TTL)."""
        ttl = self._hit_ttl_ms if quote is not None else self._miss_ttl_ms
        entry = CacheEntry(value=quote, expires_at_ms=self._clock() + ttl)
        self._store[ref] = entry
        return entry

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, ref: object) -> bool:
        return isinstance(ref, PairRef) and self.get(ref) is not ABSENT
