"""
One-time code ledger.

Issues short-lived 6-digit codes, verifies them, and keeps two invariants:
- at most one PENDING code per (purpose, subject); issuing a new one expires
  the previous code
- a code accepts at most ``max_attempts`` wrong guesses, then turns FAILED

All state changes for a (purpose, subject) run under one store lock, and every
call writes at most once per record, so concurrent verifications of the same
code cannot both succeed.
"""

import hmac
import re
import secrets
import uuid
from datetime import timedelta
from typing import Optional

import structlog

from core.clock import Clock, utc_now
from core.config import settings
from core.errors import Outcome, expired_or_exhausted, not_found, validation_error
from repositories.provider import OtpRepositoryProtocol
from schemas.otp import OtpPurpose, OtpRecord, OtpStatus, OtpVerification
from services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

CODE_LENGTH = 6

_TRIVIAL_CODE_PATTERNS = (
    re.compile(r"^(\d)\1+$"),  # 000000, 111111, ...
    re.compile(r"^0123456789"),
    re.compile(r"^123456"),
    re.compile(r"^654321"),
)


def generate_code(length: int = CODE_LENGTH) -> str:
    """Uniformly random numeric code."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def normalize_subject(subject: str) -> str:
    """Emails are lower-cased; phone numbers keep only a leading + and digits."""
    subject = subject.strip()
    if "@" in subject:
        return subject.lower()
    digits = re.sub(r"\D", "", subject)
    return f"+{digits}" if subject.startswith("+") else digits


def is_trivial_code(code: str) -> bool:
    """Codes a guessing script tries first (repeated digits, simple sequences)."""
    return any(pattern.match(code) for pattern in _TRIVIAL_CODE_PATTERNS)


class OtpLedger:
    """Issues and verifies one-time codes."""

    def __init__(
        self,
        repository: OtpRepositoryProtocol,
        store: KeyValueStore,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.store = store
        self.clock = clock
        self.expiry = timedelta(seconds=settings.OTP_EXPIRY_SECONDS)
        self.max_attempts = settings.OTP_MAX_ATTEMPTS
        self.retention = timedelta(hours=settings.OTP_RETENTION_HOURS)

    @staticmethod
    def _lock_name(purpose: OtpPurpose, subject: str) -> str:
        return f"otp:{purpose.value}:{subject}"

    async def issue(
        self,
        purpose: OtpPurpose,
        subject: str,
        ip_address: Optional[str] = None,
    ) -> OtpRecord:
        """Create a new pending code, expiring any pending code for the same purpose and subject."""
        subject = normalize_subject(subject)
        now = self.clock()

        async with self.store.lock(self._lock_name(purpose, subject)):
            superseded = await self.repository.find_by_status(purpose, subject, OtpStatus.PENDING)
            for old in superseded:
                await self.repository.save(old.model_copy(update={"status": OtpStatus.EXPIRED}))

            record = OtpRecord(
                id=str(uuid.uuid4()),
                purpose=purpose,
                subject=subject,
                code=generate_code(),
                status=OtpStatus.PENDING,
                attempts=0,
                max_attempts=self.max_attempts,
                ip_address=ip_address,
                created_at=now,
                expires_at=now + self.expiry,
            )
            await self.repository.save(record)

        logger.info(
            "otp_issued",
            otp_id=record.id,
            purpose=purpose.value,
            superseded=len(superseded),
        )
        return record

    async def verify(self, otp_id: str, code: str, purpose: OtpPurpose) -> Outcome:
        """
        Check a code against a stored record.

        Returns:
            Outcome[OtpVerification] on success; NOT_FOUND, EXPIRED_OR_EXHAUSTED
            or VALIDATION (wrong code) failures otherwise.
        """
        record = await self.repository.get(otp_id)
        if record is None or record.purpose != purpose:
            return Outcome.fail(not_found("otp_not_found", "Invalid or expired code"))

        async with self.store.lock(self._lock_name(record.purpose, record.subject)):
            current = await self.repository.get(otp_id)
            if current is None:
                return Outcome.fail(not_found("otp_not_found", "Invalid or expired code"))
            return await self._verify_locked(current, code)

    async def _verify_locked(self, record: OtpRecord, code: str) -> Outcome:
        now = self.clock()

        if record.status == OtpStatus.VERIFIED:
            return Outcome.fail(expired_or_exhausted("otp_already_used", "Code has already been used"))

        if record.status == OtpStatus.FAILED:
            return Outcome.fail(
                expired_or_exhausted("otp_attempts_exhausted", "Too many attempts. Please request a new code")
            )

        if record.status == OtpStatus.EXPIRED or record.is_expired_at(now):
            if record.status != OtpStatus.EXPIRED:
                await self.repository.save(record.model_copy(update={"status": OtpStatus.EXPIRED}))
            return Outcome.fail(expired_or_exhausted("otp_expired", "Code has expired. Please request a new one"))

        if record.attempts >= record.max_attempts:
            await self.repository.save(record.model_copy(update={"status": OtpStatus.FAILED}))
            return Outcome.fail(
                expired_or_exhausted("otp_attempts_exhausted", "Too many attempts. Please request a new code")
            )

        if not hmac.compare_digest(record.code.encode(), code.strip().encode()):
            attempts = record.attempts + 1
            status = OtpStatus.FAILED if attempts >= record.max_attempts else OtpStatus.PENDING
            updated = record.model_copy(update={"attempts": attempts, "status": status})
            await self.repository.save(updated)
            logger.warning(
                "otp_code_mismatch",
                otp_id=record.id,
                attempts=attempts,
                exhausted=status == OtpStatus.FAILED,
            )
            return Outcome.fail(
                validation_error(
                    "otp_code_mismatch",
                    "Invalid code",
                    attempts_remaining=updated.attempts_remaining,
                )
            )

        verified = record.model_copy(update={"status": OtpStatus.VERIFIED, "verified_at": now})
        await self.repository.save(verified)
        logger.info("otp_verified", otp_id=record.id, purpose=record.purpose.value)
        return Outcome.success(
            OtpVerification(
                verified=True,
                purpose=record.purpose,
                subject=record.subject,
                attempts_remaining=verified.attempts_remaining,
            )
        )

    async def is_verified(self, purpose: OtpPurpose, subject: str) -> bool:
        """Whether the subject has ever verified a code for this purpose."""
        return await self.repository.latest_verified(purpose, normalize_subject(subject)) is not None

    async def get_pending(self, purpose: OtpPurpose, subject: str) -> Optional[OtpRecord]:
        """The live pending code, if any (an expired-by-time code does not count)."""
        pending = await self.repository.find_by_status(purpose, normalize_subject(subject), OtpStatus.PENDING)
        now = self.clock()
        live = [r for r in pending if not r.is_expired_at(now)]
        return live[0] if live else None

    async def cleanup(self) -> int:
        """Purge records created before the retention window. Returns how many were removed."""
        removed = await self.repository.delete_created_before(self.clock() - self.retention)
        if removed:
            logger.info("otp_cleanup_completed", removed=removed)
        return removed
