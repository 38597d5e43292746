"""
Temporary IP deny-list.

Blocks live in the shared store under ``ipblock:{ip}`` with no store TTL;
expiry is checked lazily on every read (a block is over from ``unblock_at``
onwards) and an expired record is deleted when it is seen. ``sweep_expired``
does the same for every record and runs from the background scheduler.
"""

from datetime import timedelta
from typing import Optional

import structlog

from core.clock import Clock, utc_now
from core.config import settings
from schemas.security import BlockedIpRecord
from services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

KEY_PREFIX = "ipblock:"


class IpBlockRegistry:
    """Time-bounded IP blocks with lazy expiry."""

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    @staticmethod
    def _key(ip_address: str) -> str:
        return f"{KEY_PREFIX}{ip_address}"

    async def _read_live(self, ip_address: str) -> Optional[BlockedIpRecord]:
        """Current record for an IP, deleting it if it has expired. Caller holds the lock."""
        raw = await self.store.get(self._key(ip_address))
        if raw is None:
            return None
        record = BlockedIpRecord.model_validate_json(raw)
        if record.is_expired(self.clock()):
            await self.store.delete(self._key(ip_address))
            logger.info("ip_block_expired", ip=ip_address[:8])
            return None
        return record

    async def block(
        self,
        ip_address: str,
        reason: str,
        duration_hours: Optional[float] = None,
    ) -> BlockedIpRecord:
        """
        Block an IP, replacing any existing block.

        Raises:
            ValueError: if the duration is not positive or too large to represent
        """
        hours = settings.IP_BLOCK_DEFAULT_HOURS if duration_hours is None else duration_hours
        now = self.clock()
        try:
            unblock_at = now + timedelta(hours=hours)
        except OverflowError:
            raise ValueError("Block duration is too long") from None
        # Sub-microsecond durations round to zero
        if unblock_at <= now:
            raise ValueError("Block duration must be positive")

        record = BlockedIpRecord(
            ip_address=ip_address,
            reason=reason,
            blocked_at=now,
            unblock_at=unblock_at,
        )
        async with self.store.lock(self._key(ip_address)):
            await self.store.set(self._key(ip_address), record.model_dump_json())

        logger.warning("ip_blocked", ip=ip_address[:8], reason=reason, hours=hours)
        return record

    async def get(self, ip_address: str) -> Optional[BlockedIpRecord]:
        async with self.store.lock(self._key(ip_address)):
            return await self._read_live(ip_address)

    async def is_blocked(self, ip_address: str) -> bool:
        return await self.get(ip_address) is not None

    async def unblock(self, ip_address: str) -> bool:
        """Remove a block. Returns False when there was no active block."""
        async with self.store.lock(self._key(ip_address)):
            existed = await self._read_live(ip_address) is not None
            if existed:
                await self.store.delete(self._key(ip_address))

        if existed:
            logger.info("ip_unblocked", ip=ip_address[:8])
        return existed

    async def sweep_expired(self) -> int:
        """Delete every expired block. Returns how many were removed."""
        removed = 0
        for key in await self.store.keys(KEY_PREFIX):
            ip_address = key[len(KEY_PREFIX) :]
            async with self.store.lock(key):
                raw = await self.store.get(key)
                if raw is None:
                    continue
                if BlockedIpRecord.model_validate_json(raw).is_expired(self.clock()):
                    await self.store.delete(key)
                    removed += 1
                    logger.info("ip_block_expired", ip=ip_address[:8])
        if removed:
            logger.info("ip_block_sweep_completed", removed=removed)
        return removed

    async def list_active(self) -> list[BlockedIpRecord]:
        """All active blocks, soonest expiry first. Sweeps expired records first."""
        await self.sweep_expired()
        now = self.clock()
        records = []
        for key in await self.store.keys(KEY_PREFIX):
            raw = await self.store.get(key)
            if raw is None:
                continue
            record = BlockedIpRecord.model_validate_json(raw)
            if not record.is_expired(now):
                records.append(record)
        return sorted(records, key=lambda r: r.unblock_at)
