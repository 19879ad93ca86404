"""
Last-writer-wins conflict resolution.

The snapshot with the later `updated_at` (falling back to `created_at`) is
kept in full; the other is discarded. Fields are never merged.

Ties, including snapshots that carry no timestamp at all, keep the local
version: a remote copy only replaces local data when it is strictly newer.
"""

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from contasync.sync.clock import parse_timestamp

logger = logging.getLogger(__name__)

_UPDATED_KEYS = ("updated_at", "updatedAt")
_CREATED_KEYS = ("created_at", "createdAt")


def snapshot_timestamp(snapshot: Optional[Mapping[str, Any]]) -> Optional[datetime]:
    if not snapshot:
        return None
    for keys in (_UPDATED_KEYS, _CREATED_KEYS):
        for key in keys:
            value = snapshot.get(key)
            if value:
                try:
                    return parse_timestamp(value)
                except (TypeError, ValueError):
                    logger.warning("Unparseable %s on snapshot: %r", key, value)
    return None


class ConflictResolver:
    def remote_wins(self, local: Mapping[str, Any], remote: Mapping[str, Any]) -> bool:
        remote_ts = snapshot_timestamp(remote)
        if remote_ts is None:
            return False
        local_ts = snapshot_timestamp(local)
        if local_ts is None:
            return True
        return remote_ts > local_ts

    def resolve(self, local: Mapping[str, Any], remote: Mapping[str, Any]) -> Mapping[str, Any]:
        return remote if self.remote_wins(local, remote) else local
