"""Upstream price provider clients."""

from flip_core.providers.dexscreener import DexscreenerClient
from flip_core.providers.geckoterminal import GeckoTerminalClient
from flip_core.providers.retry import RetryPolicy, call_with_retry

__all__ = ["DexscreenerClient", "GeckoTerminalClient", "RetryPolicy", "call_with_retry"]
