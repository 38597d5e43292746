"""
Device trust-on-second-sight.

A device fingerprint seen for the first time is not trusted yet; from the
second sighting on it is. Fingerprints are stored as salted HMACs so the raw
client value never reaches the store.
"""

import hashlib
import hmac
from typing import Optional

import structlog

from core.config import settings
from services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

KEY_PREFIX = "device:"


def hash_fingerprint(fingerprint: str, salt: Optional[str] = None) -> str:
    """HMAC the fingerprint with a server-side salt to prevent forgery and correlation."""
    salt = salt or settings.fingerprint_salt
    return hmac.new(salt.encode(), fingerprint.encode(), hashlib.sha256).hexdigest()


class DeviceTrustRegistry:
    """Remembers device fingerprints."""

    def __init__(self, store: KeyValueStore, ttl_days: Optional[int] = None):
        self.store = store
        ttl_days = settings.DEVICE_TRUST_TTL_DAYS if ttl_days is None else ttl_days
        self.ttl_seconds = ttl_days * 86400 if ttl_days else None

    async def observe(self, fingerprint: str) -> bool:
        """
        Record a sighting of a device.

        Returns:
            True if the device had been seen before (trusted), False on first sight.
        """
        key = f"{KEY_PREFIX}{hash_fingerprint(fingerprint)}"
        sightings = await self.store.incr(key, ttl_seconds=self.ttl_seconds)
        if sightings == 1:
            logger.info("device_first_seen", device=key[len(KEY_PREFIX) : len(KEY_PREFIX) + 12])
            return False
        return True

    async def forget(self, fingerprint: str) -> bool:
        return await self.store.delete(f"{KEY_PREFIX}{hash_fingerprint(fingerprint)}")
