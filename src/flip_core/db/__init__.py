"""Database layer — engine, session, ORM base, key/value stores."""

from flip_core.db.base import Base
from flip_core.db.engine import get_engine, get_session, init_engine, new_session
from flip_core.db.store import KvStore, RoomStore, UserStore

__all__ = [
    "Base",
    "KvStore",
    "RoomStore",
    "UserStore",
    "get_engine",
    "get_session",
    "init_engine",
    "new_session",
]
