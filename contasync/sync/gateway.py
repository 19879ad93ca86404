"""
Resilient data gateway. Every remote read or write goes through here.

Translates transport and HTTP failures into the sync error taxonomy. For
ordinary reads (`execute`) a BackendConfigurationError puts the caller in
degraded mode: the fallback value is returned instead of raising, and the
condition is recorded so status displays can show it. Sync traffic uses
`call`, which translates errors but never degrades.
"""

import json
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from contasync.sync.clock import utcnow
from contasync.sync.errors import (
    AuthError,
    BackendConfigurationError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    SyncError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres "infinite recursion detected in policy": a misconfigured RLS policy.
DEGRADED_ERROR_CODES = {"42P17"}
DEGRADED_MESSAGE_MARKERS = ("infinite recursion",)


def _is_backend_misconfiguration(body: str) -> bool:
    lowered = body.lower()
    if any(marker in lowered for marker in DEGRADED_MESSAGE_MARKERS):
        return True
    try:
        payload = json.loads(body)
    except ValueError:
        return False
    if not isinstance(payload, dict):
        return False
    code = payload.get("code")
    if code is None and isinstance(payload.get("error"), dict):
        code = payload["error"].get("code")
    return str(code) in DEGRADED_ERROR_CODES


def translate_error(exc: Exception, name: str) -> SyncError:
    """Map an httpx exception onto the sync error taxonomy."""
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(f"{name} timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text
        if status in (401, 403):
            return AuthError(f"{name} rejected credentials ({status})")
        if _is_backend_misconfiguration(body):
            return BackendConfigurationError(
                f"{name} failed: backend access policy misconfigured", status, body
            )
        return ServerError(
            f"{name} failed: {status} {exc.response.reason_phrase}", status, body
        )
    if isinstance(exc, httpx.RequestError):
        return NetworkError(f"{name} failed: {exc}")
    return ServerError(f"{name} failed: {exc}")


class ResilientGateway:
    """Wraps remote operations with error translation and degraded-mode fallbacks."""

    def __init__(self, on_degraded: Optional[Callable[[str], None]] = None):
        self._on_degraded = on_degraded
        self.degraded_reason: Optional[str] = None
        self.degraded_since: Optional[datetime] = None
        self.degraded_count = 0

    @property
    def is_degraded(self) -> bool:
        return self.degraded_reason is not None

    async def call(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        """Run `operation`; raise a typed SyncError on failure."""
        try:
            return await operation()
        except SyncError:
            raise
        except Exception as exc:
            raise translate_error(exc, name) from exc

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: T,
        name: str,
    ) -> T:
        """Run `operation`; on a backend misconfiguration return `fallback` instead of raising."""
        try:
            result = await self.call(operation, name)
        except BackendConfigurationError as exc:
            self._mark_degraded(f"{name}: {exc}")
            return fallback
        self._clear_degraded()
        return result

    def _mark_degraded(self, reason: str) -> None:
        logger.warning("Degraded mode: %s; returning fallback", reason)
        if self.degraded_since is None:
            self.degraded_since = utcnow()
        self.degraded_reason = reason
        self.degraded_count += 1
        if self._on_degraded:
            try:
                self._on_degraded(reason)
            except Exception:
                logger.exception("Degraded-mode listener failed")

    def _clear_degraded(self) -> None:
        if self.degraded_reason is not None:
            logger.info("Backend healthy again, leaving degraded mode")
        self.degraded_reason = None
        self.degraded_since = None
