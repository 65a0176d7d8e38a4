"""HTTP surface over the price and settlement core."""

from flip_core.api.app import create_app

__all__ = ["create_app"]
