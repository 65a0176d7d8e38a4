"""Import all table modules so Base.metadata knows about them."""

from flip_core.db.tables.kv import KvEntryRow

__all__ = ["KvEntryRow"]
