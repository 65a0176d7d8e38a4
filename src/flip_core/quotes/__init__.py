"""Quote acquisition — cache, coalescing, pair resolution."""

from flip_core.quotes.cache import ABSENT, CacheEntry, QuoteCache
from flip_core.quotes.coalescer import RequestCoalescer
from flip_core.quotes.resolver import PairResolver, parse_pair_link, sanitize_address
from flip_core.quotes.service import PriceService

__all__ = [
    "ABSENT",
    "CacheEntry",
    "PairResolver",
    "PriceService",
    "QuoteCache",
    "RequestCoalescer",
    "parse_pair_link",
    "sanitize_address",
]
