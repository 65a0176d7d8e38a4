"""Token configuration."""

from flip_core.tokens.registry import TokenRegistry, load_token_list, row_to_token

__all__ = ["TokenRegistry", "load_token_list", "row_to_token"]
