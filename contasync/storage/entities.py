"""
Local entity store.

Entities (transactions, providers, vouchers, ...) are kept as JSON snapshots
keyed by (entity_type, entity_id). Two write paths:

  create / update / delete: tracked mutations made by the application; each
      one is appended to the change log after the write commits.
  put / remove: raw writes used when applying remote changes; never logged,
      so downloaded changes are not echoed back on the next upload.
"""

import logging
import uuid
from typing import Any, Callable, Mapping, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import Column, DateTime, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from contasync.storage.database import Base, SessionLocal, session_scope
from contasync.sync.changelog import ChangeAction, ChangeLogStore
from contasync.sync.clock import format_timestamp, utcnow

logger = logging.getLogger(__name__)


class EntityRecord(Base):
    __tablename__ = "entities"
    __table_args__ = (UniqueConstraint("entity_type", "entity_id", name="uq_entity"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(String, nullable=False)
    data = Column(JSON, nullable=False)
    stored_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


def _system_actor() -> str:
    return "system"


class EntityStore:
    def __init__(
        self,
        changelog: ChangeLogStore,
        session_factory: Optional[sessionmaker] = None,
        actor_provider: Optional[Callable[[], str]] = None,
    ):
        self.changelog = changelog
        self._session_factory = session_factory or SessionLocal
        self._actor_provider = actor_provider or _system_actor

    # ── Reads ───────────────────────────────────────────────────────

    def get(self, entity_type: str, entity_id: Any) -> Optional[dict]:
        with session_scope(self._session_factory) as db:
            row = self._find(db, entity_type, entity_id)
            return dict(row.data) if row else None

    def list_entities(self, entity_type: str) -> list[dict]:
        with session_scope(self._session_factory) as db:
            rows = (
                db.query(EntityRecord)
                .filter(EntityRecord.entity_type == entity_type)
                .order_by(EntityRecord.id)
                .all()
            )
            return [dict(r.data) for r in rows]

    # ── Raw writes (sync apply) ─────────────────────────────────────

    def put(self, entity_type: str, entity_id: Any, snapshot: Mapping[str, Any]) -> None:
        data = to_jsonable_python(dict(snapshot))
        with session_scope(self._session_factory) as db:
            row = self._find(db, entity_type, entity_id)
            if row:
                row.data = data
            else:
                db.add(EntityRecord(entity_type=entity_type, entity_id=str(entity_id), data=data))

    def remove(self, entity_type: str, entity_id: Any) -> bool:
        with session_scope(self._session_factory) as db:
            row = self._find(db, entity_type, entity_id)
            if not row:
                return False
            db.delete(row)
            return True

    # ── Tracked mutations ───────────────────────────────────────────

    def create(self, entity_type: str, values: Mapping[str, Any], entity_id: Any = None) -> dict:
        entity_id = str(entity_id if entity_id is not None else values.get("id") or uuid.uuid4().hex)
        now = format_timestamp(utcnow())
        snapshot = to_jsonable_python({**values, "id": entity_id})
        snapshot.setdefault("created_at", now)
        snapshot.setdefault("updated_at", snapshot["created_at"])

        with session_scope(self._session_factory) as db:
            if self._find(db, entity_type, entity_id):
                raise ValueError(f"{entity_type} {entity_id} already exists")
            db.add(EntityRecord(entity_type=entity_type, entity_id=entity_id, data=snapshot))

        self.changelog.append(
            self._actor_provider(), ChangeAction.CREATE, entity_type, entity_id,
            new_value=snapshot,
        )
        return snapshot

    def update(self, entity_type: str, entity_id: Any, changes: Mapping[str, Any]) -> dict:
        with session_scope(self._session_factory) as db:
            row = self._find(db, entity_type, entity_id)
            if not row:
                raise ValueError(f"{entity_type} {entity_id} not found")
            old = dict(row.data)
            new = {**old, **to_jsonable_python(dict(changes))}
            new["id"] = old.get("id", str(entity_id))
            new["updated_at"] = format_timestamp(utcnow())
            row.data = new

        self.changelog.append(
            self._actor_provider(), ChangeAction.UPDATE, entity_type, entity_id,
            old_value=old, new_value=new,
        )
        return new

    def delete(self, entity_type: str, entity_id: Any) -> bool:
        with session_scope(self._session_factory) as db:
            row = self._find(db, entity_type, entity_id)
            if not row:
                return False
            old = dict(row.data)
            db.delete(row)

        self.changelog.append(
            self._actor_provider(), ChangeAction.DELETE, entity_type, entity_id,
            old_value=old,
        )
        return True

    @staticmethod
    def _find(db, entity_type: str, entity_id: Any) -> Optional[EntityRecord]:
        return (
            db.query(EntityRecord)
            .filter_by(entity_type=entity_type, entity_id=str(entity_id))
            .first()
        )
