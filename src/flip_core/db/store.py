"""Key/value persistence for rooms and users.

Collections are stored whole, one JSON document per key, and written back
with read-modify-write. Concurrent writers are not serialized here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from flip_core.db.tables.kv import KvEntryRow
from flip_core.errors import RoomNotFoundError
from flip_core.models.duel import DuelRoom
from flip_core.models.user import UserRecord

log = structlog.get_logger("kv_store")

ROOMS_KEY = "duels:rooms"
USERS_KEY = "users:all"


class KvStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, key: str) -> dict | None:
        row = self._session.get(KvEntryRow, key)
        return row.value if row is not None else None

    def set(self, key: str, value: dict) -> None:
        now = datetime.now(timezone.utc)
        row = self._session.get(KvEntryRow, key)
        if row is None:
            self._session.add(KvEntryRow(key=key, value=value, updated_at=now))
        else:
            row.value = value
            row.updated_at = now
        self._session.commit()

    def delete(self, key: str) -> bool:
        row = self._session.get(KvEntryRow, key)
        if row is None:
            return False
        self._session.delete(row)
        self._session.commit()
        return True


def _load_models(kv: KvStore, key: str, model: type) -> dict[str, Any]:
    raw = kv.get(key) or {}
    out = {}
    for item_id, item in raw.items():
        try:
            out[item_id] = model.model_validate(item)
        except ValidationError as exc:
            log.warning("invalid_record_skipped", key=key, item_id=item_id, errors=exc.error_count())
    return out


def _dump_models(items: dict[str, Any]) -> dict:
    return {item_id: item.model_dump(mode="json") for item_id, item in items.items()}


class RoomStore:
    def __init__(self, kv: KvStore) -> None:
        self._kv = kv

    def load(self) -> dict[str, DuelRoom]:
        return _load_models(self._kv, ROOMS_KEY, DuelRoom)

    def save(self, rooms: dict[str, DuelRoom]) -> None:
        self._kv.set(ROOMS_KEY, _dump_models(rooms))

    def get(self, room_id: str) -> DuelRoom:
        room = self.load().get(room_id)
        if room is None:
            raise RoomNotFoundError(f"room {room_id} not found")
        return room

    def put(self, room: DuelRoom) -> None:
        rooms = self.load()
        rooms[room.id] = room
        self.save(rooms)


class UserStore:
    def __init__(self, kv: KvStore) -> None:
        self._kv = kv

    def load(self) -> dict[str, UserRecord]:
        return _load_models(self._kv, USERS_KEY, UserRecord)

    def save(self, users: dict[str, UserRecord]) -> None:
        self._kv.set(USERS_KEY, _dump_models(users))
