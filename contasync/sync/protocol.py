"""
Sync protocol client: upload/download exchange with the remote sync service.

Upload:   POST {endpoint}/upload   {deviceId, timestamp, changes[]}
Download: GET  {endpoint}/download?since=<ISO8601>&device=<deviceId>

Both calls carry a bearer token and their own timeout and go through the
resilient gateway, which turns failures into typed SyncErrors. Nothing is
retried here; the scheduler's next tick is the retry mechanism. An upload is
safe to repeat: the batch is rebuilt from immutable log entries and the
server deduplicates on (deviceId, entityType, entityId, timestamp).
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

import httpx
import pydantic
from pydantic_core import PydanticSerializationError

from contasync.config.settings import settings
from contasync.sync.changelog import ChangeLogEntry
from contasync.sync.clock import format_timestamp, utcnow
from contasync.sync.errors import ServerError, ValidationError
from contasync.sync.gateway import ResilientGateway
from contasync.sync.wire import DownloadResponse, RemoteChange, UploadRequest

logger = logging.getLogger(__name__)

EPOCH = "1970-01-01T00:00:00.000Z"


def settings_token() -> str:
    return settings.sync_auth_token


class SyncProtocolClient:
    """Talks to the remote sync service over HTTP."""

    def __init__(
        self,
        gateway: ResilientGateway,
        endpoint: Optional[str] = None,
        token_provider: Optional[Callable[[], str]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.gateway = gateway
        self.endpoint = (endpoint or settings.sync_endpoint).rstrip("/")
        self._token_provider = token_provider or settings_token
        self.timeout = timeout if timeout is not None else settings.sync_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._token_provider()}"},
        )

    # ── Upload ──────────────────────────────────────────────────────

    def build_upload_payload(self, device_id: str, batch: Sequence[ChangeLogEntry]) -> dict:
        request = UploadRequest(
            device_id=device_id,
            timestamp=utcnow(),
            changes=[RemoteChange.from_entry(e) for e in batch],
        )
        try:
            return request.model_dump(
                mode="json",
                by_alias=True,
                exclude={"changes": {"__all__": {"device_id"}}},
            )
        except PydanticSerializationError as e:
            raise ValidationError(f"Change batch cannot be serialized: {e}") from e

    async def upload(self, device_id: str, batch: Sequence[ChangeLogEntry]) -> dict:
        """Send the batch as a single request. Returns the server acknowledgment."""
        payload = self.build_upload_payload(device_id, batch)

        async def _post() -> dict:
            async with self._client() as client:
                resp = await client.post(f"{self.endpoint}/upload", json=payload)
                resp.raise_for_status()
                if not resp.content:
                    return {}
                try:
                    return resp.json()
                except ValueError:
                    return {"raw": resp.text}

        ack = await self.gateway.call(_post, "Upload")
        logger.info("Uploaded %d changes to cloud", len(batch))
        return ack

    # ── Download ────────────────────────────────────────────────────

    async def download(self, since: Optional[datetime], device_id: str) -> list[RemoteChange]:
        """All changes from other devices after `since`."""
        params = {
            "since": format_timestamp(since) if since else EPOCH,
            "device": device_id,
        }

        async def _get() -> list[RemoteChange]:
            async with self._client() as client:
                resp = await client.get(f"{self.endpoint}/download", params=params)
                resp.raise_for_status()
                try:
                    body = DownloadResponse.model_validate(resp.json())
                except (ValueError, pydantic.ValidationError) as e:
                    raise ServerError(
                        f"Malformed download response: {e}", resp.status_code, resp.text
                    ) from e
                return body.changes

        changes = await self.gateway.call(_get, "Download")
        foreign = [c for c in changes if c.device_id != device_id]
        if len(foreign) != len(changes):
            logger.debug("Dropped %d echoed changes from this device", len(changes) - len(foreign))
        if foreign:
            logger.info("Downloaded %d updates from cloud", len(foreign))
        return foreign
