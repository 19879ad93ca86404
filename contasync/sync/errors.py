"""Error taxonomy for remote calls and sync cycles."""

from typing import Optional


class SyncError(Exception):
    """Base class for every error surfaced by the sync core."""


class NetworkError(SyncError):
    """Connection-level failure (DNS, refused, reset)."""


class RequestTimeoutError(SyncError):
    """The remote call exceeded its timeout; server-side outcome unknown."""


class AuthError(SyncError):
    """The bearer credential was rejected (invalid or expired)."""


class ServerError(SyncError):
    """Non-2xx response, or a 2xx response whose body could not be understood."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class BackendConfigurationError(ServerError):
    """Structural problem with the remote service (e.g. a recursive access policy)."""


class ValidationError(SyncError):
    """Local data that cannot be serialized for upload."""
