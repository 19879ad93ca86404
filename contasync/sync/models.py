"""
SQLAlchemy models for the sync engine.

- ChangeLogRecord: append-only ledger of local mutations and sync audit events
- KeyValueRecord: small persisted values (watermark, device id, mode flags)
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index

from contasync.storage.database import Base


class ChangeLogRecord(Base):
    __tablename__ = "sync_changelog"
    __table_args__ = (
        Index("ix_changelog_ts", "timestamp", "id"),
        Index("ix_changelog_entity", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_name = Column(String, nullable=False)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)


class KeyValueRecord(Base):
    __tablename__ = "sync_kv"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
