"""
In-memory one-time code repository.
"""

from datetime import datetime
from typing import Optional

from schemas.otp import OtpPurpose, OtpRecord, OtpStatus


class InMemoryOtpRepository:
    """Repository for one-time code records."""

    def __init__(self) -> None:
        self._records: dict[str, OtpRecord] = {}

    async def get(self, otp_id: str) -> Optional[OtpRecord]:
        return self._records.get(otp_id)

    async def save(self, record: OtpRecord) -> OtpRecord:
        self._records[record.id] = record
        return record

    async def find_by_status(self, purpose: OtpPurpose, subject: str, status: OtpStatus) -> list[OtpRecord]:
        """Records for a purpose and subject in the given status, newest first."""
        matches = [
            r
            for r in self._records.values()
            if r.purpose == purpose and r.subject == subject and r.status == status
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def latest_verified(self, purpose: OtpPurpose, subject: str) -> Optional[OtpRecord]:
        """The most recently verified record, by ``verified_at``."""
        verified = await self.find_by_status(purpose, subject, OtpStatus.VERIFIED)
        verified = [r for r in verified if r.verified_at is not None]
        if not verified:
            return None
        return max(verified, key=lambda r: r.verified_at)  # type: ignore[arg-type, return-value]

    async def delete_created_before(self, cutoff: datetime) -> int:
        """Delete records created before ``cutoff``. Returns the number removed."""
        stale = [otp_id for otp_id, r in self._records.items() if r.created_at < cutoff]
        for otp_id in stale:
            del self._records[otp_id]
        return len(stale)
