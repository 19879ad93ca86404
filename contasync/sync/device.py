"""Per-installation device identity."""

import logging
import secrets
import time
from typing import Optional

from contasync.storage.kv import PersistentStore

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"
_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_device_id() -> str:
    """`cv-<9 random base36 chars>-<base36 epoch millis>`."""
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"cv-{random_part}-{_base36(int(time.time() * 1000))}"


class DeviceIdentity:
    def __init__(self, store: PersistentStore):
        self._store = store
        self._cached: Optional[str] = None

    def get(self) -> str:
        if self._cached:
            return self._cached

        try:
            device_id = self._store.get(DEVICE_ID_KEY)
            if not device_id:
                device_id = generate_device_id()
                self._store.set(DEVICE_ID_KEY, device_id)
                logger.info("Created new device identity: %s", device_id)
        except Exception:
            # Deduplication across restarts is lost, sync keeps working.
            device_id = generate_device_id()
            logger.warning(
                "Device identity store unavailable, using ephemeral id %s", device_id,
                exc_info=True,
            )
            return device_id

        self._cached = device_id
        return device_id
