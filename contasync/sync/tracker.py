"""Computes the set of change-log entries still waiting to be uploaded."""

from datetime import datetime
from typing import Iterable, Optional

from contasync.config.settings import settings
from contasync.sync.changelog import MUTATION_ACTIONS, ChangeLogEntry, ChangeLogStore


class ChangeTracker:
    def __init__(self, changelog: ChangeLogStore, syncable_types: Optional[Iterable[str]] = None):
        self.changelog = changelog
        self.syncable_types = frozenset(
            syncable_types if syncable_types is not None else settings.sync_syncable_types
        )

    def is_syncable(self, entry: ChangeLogEntry) -> bool:
        return entry.entity_type in self.syncable_types and entry.action in MUTATION_ACTIONS

    def compute_delta(self, watermark: Optional[datetime]) -> list[ChangeLogEntry]:
        """Syncable entries newer than `watermark`, oldest first."""
        return [e for e in self.changelog.since(watermark) if self.is_syncable(e)]

    def pending_count(self, watermark: Optional[datetime]) -> int:
        return len(self.compute_delta(watermark))
