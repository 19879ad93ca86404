"""Shared test fixtures."""
import json
import os
from typing import Callable, Optional

os.environ.setdefault("CONTASYNC_DATABASE_URL", "sqlite:///:memory:")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from contasync.storage.database import Base, init_db
from contasync.storage.entities import EntityStore
from contasync.storage.kv import SqlPersistentStore
from contasync.sync.changelog import ChangeLogStore
from contasync.sync.device import DeviceIdentity
from contasync.sync.engine import SyncScheduler
from contasync.sync.gateway import ResilientGateway
from contasync.sync.protocol import SyncProtocolClient
from contasync.sync.tracker import ChangeTracker

ENDPOINT = "https://sync.test/sync"
SYNCABLE = ("transaction", "provider", "voucher")


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine, tables created fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="kv")
def kv_fixture(session_factory):
    return SqlPersistentStore(session_factory)


@pytest.fixture(name="changelog")
def changelog_fixture(session_factory):
    return ChangeLogStore(session_factory, capacity=1000)


@pytest.fixture(name="entities")
def entities_fixture(changelog, session_factory):
    return EntityStore(changelog, session_factory, actor_provider=lambda: "maria")


@pytest.fixture(name="tracker")
def tracker_fixture(changelog):
    return ChangeTracker(changelog, SYNCABLE)


# ─── Fake remote sync service ─────────────────────────────────────────────────

class FakeSyncServer:
    """Records requests and answers /upload and /download like the real service."""

    def __init__(self):
        self.uploads: list[dict] = []
        self.downloads: list[dict] = []
        self.remote_changes: list[dict] = []
        self.upload_response: Callable[[httpx.Request], httpx.Response] = (
            lambda request: httpx.Response(200, json={"ok": True})
        )
        self.download_response: Optional[Callable[[httpx.Request], httpx.Response]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/upload"):
            self.uploads.append(
                {"headers": dict(request.headers), "body": json.loads(request.content)}
            )
            return self.upload_response(request)
        if request.url.path.endswith("/download"):
            self.downloads.append(
                {"headers": dict(request.headers), "params": dict(request.url.params)}
            )
            if self.download_response is not None:
                return self.download_response(request)
            return httpx.Response(200, json={"changes": self.remote_changes})
        return httpx.Response(404, json={"message": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(name="server")
def server_fixture():
    return FakeSyncServer()


@pytest.fixture(name="gateway")
def gateway_fixture():
    return ResilientGateway()


@pytest.fixture(name="client")
def client_fixture(server, gateway):
    return SyncProtocolClient(
        gateway,
        endpoint=ENDPOINT,
        token_provider=lambda: "secret-token",
        timeout=5.0,
        transport=server.transport,
    )


@pytest.fixture(name="scheduler")
def scheduler_fixture(changelog, tracker, client, entities, kv, gateway):
    return SyncScheduler(
        changelog=changelog,
        tracker=tracker,
        client=client,
        entities=entities,
        device=DeviceIdentity(kv),
        store=kv,
        gateway=gateway,
        interval_seconds=300,
        retention_days=30,
    )
