"""
Append-only change log.

Every tracked mutation (CREATE/UPDATE/DELETE on an entity) and every sync
outcome (SYNC_SUCCESS/SYNC_ERROR) lands here. The log is the source of truth
for "what changed" and feeds the change tracker.

Writes are best-effort: a failed append is logged and swallowed so a user
action is never blocked on audit-log durability. The log is capped; once the
cap is exceeded the oldest entries are evicted first, synced or not.
"""

import enum
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from contasync.config.settings import settings
from contasync.storage.database import SessionLocal, session_scope
from contasync.sync.clock import MonotonicClock, as_utc
from contasync.sync.models import ChangeLogRecord

logger = logging.getLogger(__name__)


class ChangeAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SYNC_SUCCESS = "SYNC_SUCCESS"
    SYNC_ERROR = "SYNC_ERROR"


MUTATION_ACTIONS = frozenset({ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.DELETE})


@dataclass(frozen=True)
class ChangeLogEntry:
    id: int
    actor_name: str
    action: ChangeAction
    entity_type: str
    entity_id: Optional[str]
    old_value: Optional[Any]
    new_value: Optional[Any]
    timestamp: datetime

    @classmethod
    def from_record(cls, record: ChangeLogRecord) -> "ChangeLogEntry":
        return cls(
            id=record.id,
            actor_name=record.actor_name,
            action=ChangeAction(record.action),
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            old_value=record.old_value,
            new_value=record.new_value,
            timestamp=as_utc(record.timestamp),
        )


class ChangeLogStore:
    """Capacity-bounded, append-only ledger persisted through SQLAlchemy."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        capacity: Optional[int] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self._session_factory = session_factory or SessionLocal
        self.capacity = capacity if capacity is not None else settings.sync_changelog_capacity
        self.clock = clock or MonotonicClock()
        self._seed_clock()

    def _seed_clock(self) -> None:
        try:
            with session_scope(self._session_factory) as db:
                newest = db.query(func.max(ChangeLogRecord.timestamp)).scalar()
        except SQLAlchemyError:
            logger.warning("Could not read newest change log timestamp", exc_info=True)
            return
        if newest is not None:
            self.clock.observe(newest)

    # ── Write ───────────────────────────────────────────────────────

    def append(
        self,
        actor_name: str,
        action: ChangeAction,
        entity_type: str,
        entity_id: Optional[Any] = None,
        old_value: Optional[Any] = None,
        new_value: Optional[Any] = None,
    ) -> Optional[int]:
        """Append an entry. Returns its id, or None if the write failed."""
        action = ChangeAction(action)
        actor_name = actor_name or "system"
        record = ChangeLogRecord(
            actor_name=actor_name,
            action=action.value,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            old_value=old_value,
            new_value=new_value,
            timestamp=self.clock.now(),
        )
        try:
            with session_scope(self._session_factory) as db:
                db.add(record)
                db.flush()
                entry_id = record.id
                self._evict(db)
        except (SQLAlchemyError, TypeError, ValueError):
            logger.exception(
                "Failed to append change log entry: %s on %s/%s",
                action.value, entity_type, entity_id,
            )
            return None

        logger.debug(
            "Change log: %s on %s%s by %s",
            action.value, entity_type,
            f" #{entity_id}" if entity_id is not None else "", actor_name,
        )
        return entry_id

    def _evict(self, db) -> None:
        overflow = db.query(func.count(ChangeLogRecord.id)).scalar() - self.capacity
        if overflow <= 0:
            return
        oldest_ids = [
            row_id for (row_id,) in (
                db.query(ChangeLogRecord.id)
                .order_by(ChangeLogRecord.timestamp.asc(), ChangeLogRecord.id.asc())
                .limit(overflow)
                .all()
            )
        ]
        db.query(ChangeLogRecord).filter(ChangeLogRecord.id.in_(oldest_ids)).delete(
            synchronize_session=False
        )
        logger.debug("Evicted %d oldest change log entries", len(oldest_ids))

    def purge_older_than(self, days: int) -> int:
        """Retention sweep. Returns the number of entries removed."""
        cutoff = self.clock.now() - timedelta(days=days)
        try:
            with session_scope(self._session_factory) as db:
                removed = (
                    db.query(ChangeLogRecord)
                    .filter(ChangeLogRecord.timestamp < cutoff)
                    .delete(synchronize_session=False)
                )
        except SQLAlchemyError:
            logger.exception("Change log retention sweep failed")
            return 0
        logger.info("Change log retention sweep removed %d entries older than %d days", removed, days)
        return removed

    # ── Read ────────────────────────────────────────────────────────

    def query(
        self,
        actor: Optional[str] = None,
        action: Optional[ChangeAction] = None,
        entity_type: Optional[str] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[ChangeLogEntry]:
        """Newest-first entries matching every given filter."""
        with session_scope(self._session_factory) as db:
            q = db.query(ChangeLogRecord)
            if actor is not None:
                q = q.filter(ChangeLogRecord.actor_name == actor)
            if action is not None:
                q = q.filter(ChangeLogRecord.action == ChangeAction(action).value)
            if entity_type is not None:
                q = q.filter(ChangeLogRecord.entity_type == entity_type)
            if from_time is not None:
                q = q.filter(ChangeLogRecord.timestamp >= as_utc(from_time))
            if to_time is not None:
                q = q.filter(ChangeLogRecord.timestamp <= as_utc(to_time))
            q = q.order_by(ChangeLogRecord.timestamp.desc(), ChangeLogRecord.id.desc())
            if limit is not None:
                q = q.limit(limit)
            return [ChangeLogEntry.from_record(r) for r in q.all()]

    def since(self, watermark: Optional[datetime] = None) -> list[ChangeLogEntry]:
        """Oldest-first entries strictly after `watermark` (all entries if None)."""
        with session_scope(self._session_factory) as db:
            q = db.query(ChangeLogRecord)
            if watermark is not None:
                q = q.filter(ChangeLogRecord.timestamp > as_utc(watermark))
            q = q.order_by(ChangeLogRecord.timestamp.asc(), ChangeLogRecord.id.asc())
            return [ChangeLogEntry.from_record(r) for r in q.all()]

    def entity_history(self, entity_type: str, entity_id: Any) -> list[ChangeLogEntry]:
        with session_scope(self._session_factory) as db:
            rows = (
                db.query(ChangeLogRecord)
                .filter(
                    ChangeLogRecord.entity_type == entity_type,
                    ChangeLogRecord.entity_id == str(entity_id),
                )
                .order_by(ChangeLogRecord.timestamp.desc(), ChangeLogRecord.id.desc())
                .all()
            )
            return [ChangeLogEntry.from_record(r) for r in rows]

    def count(self) -> int:
        with session_scope(self._session_factory) as db:
            return db.query(func.count(ChangeLogRecord.id)).scalar()

    def summary(self, recent: int = 20) -> dict:
        """Totals per action and per actor, plus the most recent entries."""
        entries = self.query()
        by_action = Counter(e.action.value for e in entries)
        by_actor = Counter(e.actor_name for e in entries)
        return {
            "total_actions": len(entries),
            "actions_by_type": dict(by_action),
            "top_actors": [
                {"actor_name": name, "action_count": count}
                for name, count in by_actor.most_common(10)
            ],
            "recent_activity": entries[:recent],
        }
