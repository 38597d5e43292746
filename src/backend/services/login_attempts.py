"""
Sliding-window login attempt tracking.

Attempts are kept per key, either ``(identity, ip)`` or a per-IP aggregate,
as an ordered list in the shared store. Every write prunes entries older
than the retention window, so a key never grows without bound.

Detection only: blocking the IP on brute force is up to the caller.
"""

import json
from datetime import timedelta
from typing import Optional

import structlog

from core.clock import Clock, utc_now
from core.config import settings
from schemas.security import LoginAttemptRecord
from services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

KEY_PREFIX = "attempts:"


def attempt_key(identity: str, ip_address: str) -> str:
    """Key for one identity coming from one IP."""
    return f"{identity.strip().lower()}:{ip_address}"


def ip_key(ip_address: str) -> str:
    """Aggregate key for every identity tried from one IP."""
    return f"ip:{ip_address}"


class LoginAttemptTracker:
    """Records login attempts and answers brute-force / burst questions."""

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock
        self.retention = timedelta(hours=settings.LOGIN_ATTEMPT_RETENTION_HOURS)

    async def _load(self, key: str) -> list[LoginAttemptRecord]:
        raw = await self.store.get(f"{KEY_PREFIX}{key}")
        if not raw:
            return []
        return [LoginAttemptRecord.model_validate(item) for item in json.loads(raw)]

    async def _append(self, key: str, attempts: list[LoginAttemptRecord], entry: LoginAttemptRecord) -> None:
        # Caller holds the key lock
        cutoff = entry.timestamp - self.retention
        kept = [a for a in attempts if a.timestamp >= cutoff]
        kept.append(entry)
        await self.store.set(
            f"{KEY_PREFIX}{key}",
            json.dumps([a.model_dump(mode="json") for a in kept]),
            ttl_seconds=int(self.retention.total_seconds()),
        )

    async def record(self, key: str, success: bool, reason: Optional[str] = None) -> LoginAttemptRecord:
        """Append an attempt to ``key`` and prune entries past retention."""
        entry = LoginAttemptRecord(key=key, timestamp=self.clock(), success=success, reason=reason)

        async with self.store.lock(f"{KEY_PREFIX}{key}"):
            await self._append(key, await self._load(key), entry)

        if not success:
            logger.warning("login_attempt_failed", key=key[:24], reason=reason)
        return entry

    async def record_login(
        self,
        identity: str,
        ip_address: str,
        success: bool,
        reason: Optional[str] = None,
    ) -> None:
        """Record an attempt under both the identity key and the per-IP aggregate."""
        await self.record(attempt_key(identity, ip_address), success, reason)
        await self.record(ip_key(ip_address), success, reason)

    async def reserve(
        self,
        key: str,
        window_minutes: float,
        limit: int,
        reason: Optional[str] = None,
    ) -> tuple[bool, int]:
        """
        Record a successful attempt on ``key`` unless ``limit`` attempts already
        fall inside the window. Check and append run under the key lock.

        Returns:
            (reserved, attempts in the window before this call)
        """
        now = self.clock()
        since = now - timedelta(minutes=window_minutes)

        async with self.store.lock(f"{KEY_PREFIX}{key}"):
            attempts = await self._load(key)
            recent = sum(1 for a in attempts if a.timestamp >= since)
            if recent >= limit:
                return False, recent
            await self._append(key, attempts, LoginAttemptRecord(key=key, timestamp=now, success=True, reason=reason))
        return True, recent

    async def recent_attempts(self, key: str, window_minutes: float) -> list[LoginAttemptRecord]:
        since = self.clock() - timedelta(minutes=window_minutes)
        return [a for a in await self._load(key) if a.timestamp >= since]

    async def recent_failures(self, key: str, window_minutes: float) -> int:
        return sum(1 for a in await self.recent_attempts(key, window_minutes) if not a.success)

    async def is_brute_force(self, key: str) -> bool:
        """Too many failures inside the brute-force window (latest failure included)."""
        failures = await self.recent_failures(key, settings.BRUTEFORCE_WINDOW_MINUTES)
        return failures >= settings.BRUTEFORCE_MAX_FAILURES

    async def is_burst(self, key: str) -> bool:
        """The last N attempts, successful or not, came faster than a human types."""
        attempts = await self._load(key)
        count = settings.BURST_ATTEMPT_COUNT
        if len(attempts) < count:
            return False
        window = attempts[-count:]
        span = window[-1].timestamp - window[0].timestamp
        if span < timedelta(seconds=settings.BURST_WINDOW_SECONDS):
            logger.warning("login_burst_detected", key=key[:24], span_seconds=span.total_seconds())
            return True
        return False

    async def is_suspicious(self, key: str) -> bool:
        return await self.is_brute_force(key) or await self.is_burst(key)

    async def clear(self, key: str) -> None:
        async with self.store.lock(f"{KEY_PREFIX}{key}"):
            await self.store.delete(f"{KEY_PREFIX}{key}")

    async def clear_identity(self, identity: str) -> int:
        """Drop every ``(identity, ip)`` history for an identity. Returns keys removed."""
        prefix = f"{KEY_PREFIX}{identity.strip().lower()}:"
        removed = 0
        for store_key in await self.store.keys(prefix):
            async with self.store.lock(store_key):
                if await self.store.delete(store_key):
                    removed += 1
        return removed
