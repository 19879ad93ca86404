"""
Persistent key-value store for small pieces of sync state.

Keys used by the sync core:
  last_sync  : ISO 8601 watermark of the last fully successful cycle
  device_id  : stable per-installation identifier
  sync_mode  : "offline-first" once offline mode has been initialized

Durability is best-effort: callers decide whether a failure matters.
"""

import logging
from typing import Optional, Protocol

from sqlalchemy.orm import sessionmaker

from contasync.storage.database import SessionLocal, session_scope
from contasync.sync.models import KeyValueRecord

logger = logging.getLogger(__name__)


class PersistentStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class SqlPersistentStore:
    """PersistentStore backed by the `sync_kv` table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def get(self, key: str) -> Optional[str]:
        with session_scope(self._session_factory) as db:
            row = db.get(KeyValueRecord, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with session_scope(self._session_factory) as db:
            row = db.get(KeyValueRecord, key)
            if row:
                row.value = value
            else:
                db.add(KeyValueRecord(key=key, value=value))

    def delete(self, key: str) -> None:
        with session_scope(self._session_factory) as db:
            row = db.get(KeyValueRecord, key)
            if row:
                db.delete(row)


class MemoryPersistentStore:
    """Process-local store. Nothing survives a restart."""

    def __init__(self, initial: Optional[dict] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
