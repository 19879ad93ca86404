"""
Ordinary (non-sync) reads against the hosted backend.

Every call goes through ResilientGateway.execute, so a misconfigured backend
yields an empty result and a degraded-mode flag instead of an exception.
"""

import logging
from typing import Any, Callable, Optional

import httpx
import pydantic

from contasync.config.settings import settings
from contasync.sync.errors import ServerError
from contasync.sync.gateway import ResilientGateway
from contasync.sync.protocol import settings_token
from contasync.sync.wire import RecordsResponse

logger = logging.getLogger(__name__)


class RemoteRecords:
    def __init__(
        self,
        gateway: ResilientGateway,
        endpoint: Optional[str] = None,
        token_provider: Optional[Callable[[], str]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.gateway = gateway
        self.endpoint = (endpoint or settings.records_endpoint).rstrip("/")
        self._token_provider = token_provider or settings_token
        self.timeout = timeout if timeout is not None else settings.sync_timeout_seconds
        self._transport = transport

    async def fetch(self, entity_type: str, **filters: Any) -> list[dict]:
        """Records of one entity type, filtered server-side. Empty list in degraded mode."""

        async def _get() -> list[dict]:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self._token_provider()}"},
            ) as client:
                resp = await client.get(f"{self.endpoint}/records/{entity_type}", params=filters)
                resp.raise_for_status()
                try:
                    body = RecordsResponse.model_validate(resp.json())
                except (ValueError, pydantic.ValidationError) as e:
                    raise ServerError(
                        f"Malformed records response: {e}", resp.status_code, resp.text
                    ) from e
                logger.info("Retrieved %d %s records from backend", len(body.records), entity_type)
                return body.records

        return await self.gateway.execute(_get, [], f"Get {entity_type} records")

    async def list_providers(self, **filters: Any) -> list[dict]:
        return await self.fetch("provider", **filters)
