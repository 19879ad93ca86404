"""
Sync scheduler: the state machine that drives upload/download cycles.

Phases: IDLE -> SYNCING -> (IDLE | ERROR -> IDLE)

A cycle starts from the auto-sync timer, a reconnect, or a manual trigger.
Only one cycle runs at a time; a trigger while SYNCING or offline does nothing.
Cycle steps:
  1. delta = tracker.compute_delta(watermark)
  2. upload(delta) if non-empty
  3. download(watermark)
  4. resolve each remote change against local state and apply it
  5. watermark := cycle start time
  6. pending count recomputed

Failures are recorded in SyncState.last_error and as a SYNC_ERROR change-log
entry; they are never raised to the caller. The watermark only moves after a
fully successful cycle.
"""

import asyncio
import enum
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Optional

from contasync.config.settings import settings
from contasync.storage.entities import EntityStore
from contasync.storage.kv import PersistentStore
from contasync.sync.changelog import MUTATION_ACTIONS, ChangeAction, ChangeLogStore
from contasync.sync.clock import format_timestamp, parse_timestamp
from contasync.sync.conflict import ConflictResolver
from contasync.sync.device import DeviceIdentity
from contasync.sync.errors import SyncError, ValidationError
from contasync.sync.gateway import ResilientGateway
from contasync.sync.protocol import SyncProtocolClient
from contasync.sync.tracker import ChangeTracker
from contasync.sync.wire import RemoteChange

logger = logging.getLogger(__name__)

WATERMARK_KEY = "last_sync"
MODE_KEY = "sync_mode"
OFFLINE_FIRST = "offline-first"
SYSTEM_ACTOR = "system"


class SyncPhase(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"   # offline
    SKIPPED = "skipped"               # a cycle is already running


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    uploaded: int = 0
    downloaded: int = 0
    applied: int = 0
    conflicts: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == SyncOutcome.COMPLETED


@dataclass(frozen=True)
class SyncState:
    is_online: bool = True
    last_sync_watermark: Optional[datetime] = None
    pending_count: int = 0
    sync_in_progress: bool = False
    last_error: Optional[str] = None
    phase: SyncPhase = SyncPhase.IDLE
    degraded_reason: Optional[str] = None
    last_result: Optional[SyncResult] = field(default=None)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["phase"] = self.phase.value
        data["last_sync_watermark"] = (
            format_timestamp(self.last_sync_watermark) if self.last_sync_watermark else None
        )
        if self.last_result is not None:
            data["last_result"]["outcome"] = self.last_result.outcome.value
        return data


class _CycleCounts:
    def __init__(self):
        self.uploaded = 0
        self.downloaded = 0
        self.applied = 0
        self.conflicts = 0

    def result(self, outcome: SyncOutcome, error: Optional[str] = None) -> SyncResult:
        return SyncResult(
            outcome=outcome,
            uploaded=self.uploaded,
            downloaded=self.downloaded,
            applied=self.applied,
            conflicts=self.conflicts,
            error=error,
        )


class SyncScheduler:
    """Owns SyncState; the only component that mutates it."""

    def __init__(
        self,
        changelog: ChangeLogStore,
        tracker: ChangeTracker,
        client: SyncProtocolClient,
        entities: EntityStore,
        device: DeviceIdentity,
        store: PersistentStore,
        resolver: Optional[ConflictResolver] = None,
        gateway: Optional[ResilientGateway] = None,
        interval_seconds: Optional[float] = None,
        retention_days: Optional[int] = None,
        online: bool = True,
    ):
        self.changelog = changelog
        self.tracker = tracker
        self.client = client
        self.entities = entities
        self.device = device
        self.store = store
        self.resolver = resolver or ConflictResolver()
        self.gateway = gateway or client.gateway
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.sync_interval_seconds
        )
        self.retention_days = (
            retention_days if retention_days is not None else settings.sync_changelog_retention_days
        )
        self._auto_sync_task: Optional[asyncio.Task] = None

        watermark = self._load_watermark()
        self._state = SyncState(
            is_online=online,
            last_sync_watermark=watermark,
            pending_count=self.tracker.pending_count(watermark),
        )

    # ── State ───────────────────────────────────────────────────────

    @property
    def state(self) -> SyncState:
        """Atomic snapshot; may be stale between ticks."""
        snapshot = self._state
        if self.gateway is not None and self.gateway.degraded_reason != snapshot.degraded_reason:
            snapshot = replace(snapshot, degraded_reason=self.gateway.degraded_reason)
        return snapshot

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)

    def refresh_pending(self) -> int:
        """Recount pending entries into the state. Event loop only."""
        watermark = self._state.last_sync_watermark
        count = self.tracker.pending_count(watermark)
        if self._state.last_sync_watermark == watermark:
            self._update(pending_count=count)
        return count

    def status(self) -> SyncState:
        """Snapshot with a pending count fresh against its own watermark. Never writes state."""
        snapshot = self.state
        return replace(
            snapshot, pending_count=self.tracker.pending_count(snapshot.last_sync_watermark)
        )

    def _load_watermark(self) -> Optional[datetime]:
        try:
            raw = self.store.get(WATERMARK_KEY)
            return parse_timestamp(raw) if raw else None
        except Exception:
            logger.warning("Could not load sync watermark; starting from scratch", exc_info=True)
            return None

    def _persist_watermark(self, watermark: datetime) -> None:
        try:
            self.store.set(WATERMARK_KEY, watermark.isoformat())
        except Exception:
            logger.warning("Could not persist sync watermark", exc_info=True)

    # ── Sync cycle ──────────────────────────────────────────────────

    async def perform_sync(self) -> SyncResult:
        if not self._state.is_online:
            logger.info("Offline; sync not attempted")
            return SyncResult(outcome=SyncOutcome.NOT_ATTEMPTED)
        if self._state.phase == SyncPhase.SYNCING:
            logger.debug("Sync already in progress; trigger ignored")
            return SyncResult(outcome=SyncOutcome.SKIPPED)

        self._update(phase=SyncPhase.SYNCING, sync_in_progress=True, last_error=None)
        counts = _CycleCounts()
        logger.info("Starting synchronization with cloud")

        try:
            return await self._run_cycle(counts)
        except SyncError as e:
            return self._fail(counts, str(e) or e.__class__.__name__)
        except Exception as e:
            logger.exception("Unexpected error during sync cycle")
            return self._fail(counts, f"{e.__class__.__name__}: {e}")

    async def force_sync(self) -> SyncResult:
        """Manual trigger from the surrounding application."""
        logger.info("Manual sync requested")
        return await self.perform_sync()

    async def _run_cycle(self, counts: _CycleCounts) -> SyncResult:
        started = self.changelog.clock.now()
        watermark = self._state.last_sync_watermark
        device_id = self.device.get()

        delta = self.tracker.compute_delta(watermark)
        logger.info("Sync: %d changes pending for cloud upload", len(delta))
        if delta:
            await self.client.upload(device_id, delta)
            counts.uploaded = len(delta)

        remote = await self.client.download(watermark, device_id)
        counts.downloaded = len(remote)
        self._apply_remote_changes(remote, counts)

        self._persist_watermark(started)
        result = counts.result(SyncOutcome.COMPLETED)
        self._update(
            phase=SyncPhase.IDLE,
            sync_in_progress=False,
            last_sync_watermark=started,
            pending_count=self.tracker.pending_count(started),
            last_result=result,
        )
        self.changelog.append(
            SYSTEM_ACTOR, ChangeAction.SYNC_SUCCESS, "sync",
            new_value={"timestamp": format_timestamp(started), "changes": counts.uploaded},
        )
        logger.info(
            "Sync complete: %d uploaded, %d downloaded, %d applied, %d conflicts",
            counts.uploaded, counts.downloaded, counts.applied, counts.conflicts,
        )
        return result

    def _fail(self, counts: _CycleCounts, message: str) -> SyncResult:
        result = counts.result(SyncOutcome.FAILED, error=message)
        try:
            pending = self.tracker.pending_count(self._state.last_sync_watermark)
        except Exception:
            logger.warning("Could not recount pending changes", exc_info=True)
            pending = self._state.pending_count
        self._update(
            phase=SyncPhase.ERROR,
            sync_in_progress=False,
            last_error=message,
            last_result=result,
            pending_count=pending,
        )
        logger.error("Sync failed: %s", message)
        self.changelog.append(SYSTEM_ACTOR, ChangeAction.SYNC_ERROR, "sync", new_value={"error": message})
        self._update(phase=SyncPhase.IDLE)
        return result

    # ── Apply ───────────────────────────────────────────────────────

    def _apply_remote_changes(self, changes: list[RemoteChange], counts: _CycleCounts) -> None:
        for change in changes:
            if change.action not in MUTATION_ACTIONS:
                continue
            if change.entity_type not in self.tracker.syncable_types:
                logger.warning("Ignoring remote change for unsyncable type %s", change.entity_type)
                continue
            if change.entity_id is None:
                raise ValidationError(
                    f"Remote {change.action.value} on {change.entity_type} has no entity id"
                )
            self._apply_entry(change, counts)

    def _apply_entry(self, change: RemoteChange, counts: _CycleCounts) -> None:
        local = self.entities.get(change.entity_type, change.entity_id)

        if change.action == ChangeAction.DELETE:
            if local is None:
                return
            counts.conflicts += 1
            tombstone = {"updated_at": change.timestamp}
            if self.resolver.remote_wins(local, tombstone):
                self.entities.remove(change.entity_type, change.entity_id)
                counts.applied += 1
            else:
                logger.info(
                    "Conflict on %s/%s: local edit newer than remote delete, keeping local",
                    change.entity_type, change.entity_id,
                )
            return

        snapshot = change.new_value
        if not isinstance(snapshot, dict):
            raise ValidationError(
                f"Remote {change.action.value} on {change.entity_type}/{change.entity_id} "
                "carries no entity snapshot"
            )

        if local is not None:
            counts.conflicts += 1
            if not self.resolver.remote_wins(local, snapshot):
                logger.info(
                    "Conflict on %s/%s: keeping local version",
                    change.entity_type, change.entity_id,
                )
                return
            logger.info(
                "Conflict on %s/%s: using cloud data (newer timestamp)",
                change.entity_type, change.entity_id,
            )

        self.entities.put(change.entity_type, change.entity_id, snapshot)
        counts.applied += 1

    # ── Auto-Sync Loop ──────────────────────────────────────────────

    @property
    def auto_sync_running(self) -> bool:
        return self._auto_sync_task is not None and not self._auto_sync_task.done()

    async def start_auto_sync(self) -> None:
        """Start the background auto-sync loop."""
        if self.auto_sync_running:
            return
        self._auto_sync_task = asyncio.create_task(self._auto_sync_loop())
        logger.info("Auto-sync started (interval: %ss)", self.interval_seconds)

    async def stop_auto_sync(self) -> None:
        """Stop the background auto-sync loop."""
        if self._auto_sync_task:
            self._auto_sync_task.cancel()
            try:
                await self._auto_sync_task
            except asyncio.CancelledError:
                pass
            self._auto_sync_task = None
            logger.info("Auto-sync stopped")

    async def _auto_sync_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                if self._state.is_online and self._state.phase != SyncPhase.SYNCING:
                    await self.perform_sync()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Auto-sync error")

    # ── Connectivity ────────────────────────────────────────────────

    async def set_online(self, online: bool) -> Optional[SyncResult]:
        """Update connectivity state. Triggers a sync on reconnect."""
        was_offline = not self._state.is_online
        self._update(is_online=online)

        if online and was_offline:
            logger.info("Connection restored; initiating sync")
            return await self.perform_sync()
        if not online and not was_offline:
            logger.info("Connection lost; switching to offline mode")
        return None

    @property
    def is_offline_mode(self) -> bool:
        return not self._state.is_online

    # ── Offline-first setup & housekeeping ──────────────────────────

    def initialize_offline_mode(self) -> None:
        """Persist the offline-first flag after checking the local store round-trips."""
        probe_key = "offline_probe"
        self.store.set(probe_key, "test")
        value = self.store.get(probe_key)
        self.store.delete(probe_key)
        if value != "test":
            raise RuntimeError("Local persistent store not available")
        self.store.set(MODE_KEY, OFFLINE_FIRST)
        logger.info("Offline-first mode initialized")

    @property
    def is_offline_mode_initialized(self) -> bool:
        try:
            return self.store.get(MODE_KEY) == OFFLINE_FIRST
        except Exception:
            logger.warning("Could not read sync mode flag", exc_info=True)
            return False

    def cleanup_old_sync_data(self) -> int:
        removed = self.changelog.purge_older_than(self.retention_days)
        self.refresh_pending()
        return removed
