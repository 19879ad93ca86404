"""
Service wiring.

Every sync component is constructed once at startup by `build_services` and
handed to collaborators explicitly; nothing in the sync core is a hidden
module-level singleton.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import sessionmaker

from contasync.config.settings import Settings, settings as default_settings
from contasync.storage.database import SessionLocal
from contasync.storage.entities import EntityStore
from contasync.storage.kv import PersistentStore, SqlPersistentStore
from contasync.storage.remote import RemoteRecords
from contasync.sync.changelog import ChangeLogStore
from contasync.sync.conflict import ConflictResolver
from contasync.sync.device import DeviceIdentity
from contasync.sync.engine import SyncScheduler
from contasync.sync.gateway import ResilientGateway
from contasync.sync.protocol import SyncProtocolClient
from contasync.sync.tracker import ChangeTracker

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    store: PersistentStore
    changelog: ChangeLogStore
    entities: EntityStore
    device: DeviceIdentity
    gateway: ResilientGateway
    tracker: ChangeTracker
    client: SyncProtocolClient
    records: RemoteRecords
    scheduler: SyncScheduler


def build_services(
    config: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    store: Optional[PersistentStore] = None,
    actor_provider: Optional[Callable[[], str]] = None,
    token_provider: Optional[Callable[[], str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    online: bool = True,
) -> SyncServices:
    config = config or default_settings
    session_factory = session_factory or SessionLocal
    store = store or SqlPersistentStore(session_factory)

    changelog = ChangeLogStore(session_factory, capacity=config.sync_changelog_capacity)
    entities = EntityStore(changelog, session_factory, actor_provider=actor_provider)
    device = DeviceIdentity(store)
    gateway = ResilientGateway()
    tracker = ChangeTracker(changelog, config.sync_syncable_types)
    token_provider = token_provider or (lambda: config.sync_auth_token)
    client = SyncProtocolClient(
        gateway,
        endpoint=config.sync_endpoint,
        token_provider=token_provider,
        timeout=config.sync_timeout_seconds,
        transport=transport,
    )
    records = RemoteRecords(
        gateway,
        endpoint=config.records_endpoint,
        token_provider=token_provider,
        timeout=config.sync_timeout_seconds,
        transport=transport,
    )
    scheduler = SyncScheduler(
        changelog=changelog,
        tracker=tracker,
        client=client,
        entities=entities,
        device=device,
        store=store,
        resolver=ConflictResolver(),
        gateway=gateway,
        interval_seconds=config.sync_interval_seconds,
        retention_days=config.sync_changelog_retention_days,
        online=online,
    )
    logger.info("Sync services ready (device: %s)", device.get())
    return SyncServices(
        store=store,
        changelog=changelog,
        entities=entities,
        device=device,
        gateway=gateway,
        tracker=tracker,
        client=client,
        records=records,
        scheduler=scheduler,
    )
