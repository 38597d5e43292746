"""
In-memory fraud log.

Production deployments point this at the audit store; the security core only
appends and counts.
"""

from datetime import datetime
from typing import Optional

from schemas.fraud import FraudContext, FraudLogEntry, FraudReason


class InMemoryFraudLogRepository:
    """Append-only list of fraud events."""

    def __init__(self) -> None:
        self._entries: list[FraudLogEntry] = []

    async def add(self, entry: FraudLogEntry) -> None:
        self._entries.append(entry)

    async def list_by_ip(
        self,
        ip_address: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[FraudLogEntry]:
        return [
            e
            for e in self._entries
            if e.ip_address == ip_address
            and (since is None or e.created_at >= since)
            and (until is None or e.created_at <= until)
        ]

    async def count_by_ip(
        self,
        ip_address: str,
        since: Optional[datetime] = None,
        context: Optional[FraudContext] = None,
        reason: Optional[FraudReason] = None,
    ) -> int:
        entries = await self.list_by_ip(ip_address, since=since)
        return sum(
            1
            for e in entries
            if (context is None or e.context == context) and (reason is None or e.reason == reason)
        )
