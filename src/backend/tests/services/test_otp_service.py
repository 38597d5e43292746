"""
Tests for the one-time code ledger.

Covers issuing, verification, attempt limits, expiry and retention cleanup.
"""

import asyncio
import os

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")

from core.errors import FailureKind
from schemas.otp import OtpPurpose, OtpStatus
from services.otp_service import generate_code, is_trivial_code, normalize_subject

EMAIL = OtpPurpose.EMAIL_VERIFICATION


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestHelpers:
    @pytest.mark.unit
    def test_generate_code_is_six_digits(self):
        for _ in range(50):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()

    @pytest.mark.unit
    def test_normalize_email(self):
        assert normalize_subject("  Alice@Example.COM ") == "alice@example.com"

    @pytest.mark.unit
    def test_normalize_phone(self):
        assert normalize_subject("+1 (415) 555-0123") == "+14155550123"
        assert normalize_subject("415-555-0123") == "4155550123"

    @pytest.mark.unit
    @pytest.mark.parametrize("code", ["000000", "999999", "123456", "654321"])
    def test_trivial_codes(self, code):
        assert is_trivial_code(code)

    @pytest.mark.unit
    def test_random_looking_code_not_trivial(self):
        assert not is_trivial_code("482913")


class TestIssue:
    """Tests for issuing codes."""

    @pytest.mark.asyncio
    async def test_issue_creates_pending_record(self, otp_ledger, clock):
        record = await otp_ledger.issue(EMAIL, "Alice@Example.com", "1.2.3.4")

        assert record.status == OtpStatus.PENDING
        assert record.subject == "alice@example.com"
        assert record.attempts == 0
        assert record.max_attempts == 3
        assert (record.expires_at - record.created_at).total_seconds() == 60
        assert record.ip_address == "1.2.3.4"

    @pytest.mark.asyncio
    async def test_reissue_leaves_one_pending(self, otp_ledger, otp_repo):
        first = await otp_ledger.issue(EMAIL, "alice@example.com")
        second = await otp_ledger.issue(EMAIL, "alice@example.com")

        pending = await otp_repo.find_by_status(EMAIL, "alice@example.com", OtpStatus.PENDING)
        assert [r.id for r in pending] == [second.id]
        assert (await otp_repo.get(first.id)).status == OtpStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_other_purpose_not_superseded(self, otp_ledger, otp_repo):
        reset = await otp_ledger.issue(OtpPurpose.PASSWORD_RESET, "alice@example.com")
        await otp_ledger.issue(EMAIL, "alice@example.com")

        assert (await otp_repo.get(reset.id)).status == OtpStatus.PENDING


class TestVerify:
    """Tests for verifying codes."""

    @pytest.mark.asyncio
    async def test_correct_code(self, otp_ledger, otp_repo, clock):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")

        outcome = await otp_ledger.verify(record.id, record.code, EMAIL)

        assert outcome.ok
        assert outcome.value.subject == "alice@example.com"
        stored = await otp_repo.get(record.id)
        assert stored.status == OtpStatus.VERIFIED
        assert stored.verified_at == clock()
        assert await otp_ledger.is_verified(EMAIL, "ALICE@example.com")

    @pytest.mark.asyncio
    async def test_code_cannot_be_reused(self, otp_ledger):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")
        await otp_ledger.verify(record.id, record.code, EMAIL)

        outcome = await otp_ledger.verify(record.id, record.code, EMAIL)

        assert not outcome.ok
        assert outcome.failure.code == "otp_already_used"
        assert outcome.failure.kind == FailureKind.EXPIRED_OR_EXHAUSTED

    @pytest.mark.asyncio
    async def test_superseded_code_reports_expired(self, otp_ledger):
        first = await otp_ledger.issue(EMAIL, "alice@example.com")
        await otp_ledger.issue(EMAIL, "alice@example.com")

        outcome = await otp_ledger.verify(first.id, first.code, EMAIL)

        assert outcome.failure.code == "otp_expired"

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempts(self, otp_ledger, otp_repo):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")

        outcome = await otp_ledger.verify(record.id, wrong_code(record.code), EMAIL)

        assert outcome.failure.kind == FailureKind.VALIDATION
        assert outcome.failure.code == "otp_code_mismatch"
        assert outcome.failure.detail["attempts_remaining"] == 2
        assert (await otp_repo.get(record.id)).attempts == 1

    @pytest.mark.asyncio
    async def test_third_wrong_code_exhausts(self, otp_ledger, otp_repo):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")
        bad = wrong_code(record.code)

        for _ in range(3):
            await otp_ledger.verify(record.id, bad, EMAIL)

        stored = await otp_repo.get(record.id)
        assert stored.status == OtpStatus.FAILED
        assert stored.attempts == 3

        fourth = await otp_ledger.verify(record.id, bad, EMAIL)
        assert fourth.failure.code == "otp_attempts_exhausted"
        assert (await otp_repo.get(record.id)).attempts == 3

        # Even the right code is refused now
        correct = await otp_ledger.verify(record.id, record.code, EMAIL)
        assert correct.failure.code == "otp_attempts_exhausted"

    @pytest.mark.asyncio
    async def test_expired_after_60_seconds(self, otp_ledger, otp_repo, clock):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")

        clock.advance(seconds=61)
        outcome = await otp_ledger.verify(record.id, record.code, EMAIL)

        assert outcome.failure.code == "otp_expired"
        assert (await otp_repo.get(record.id)).status == OtpStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_valid_at_exact_expiry(self, otp_ledger, clock):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")

        clock.advance(seconds=60)
        outcome = await otp_ledger.verify(record.id, record.code, EMAIL)

        assert outcome.ok

    @pytest.mark.asyncio
    async def test_unknown_id(self, otp_ledger):
        outcome = await otp_ledger.verify("missing", "123456", EMAIL)

        assert outcome.failure.kind == FailureKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_purpose_mismatch_is_not_found(self, otp_ledger):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")

        outcome = await otp_ledger.verify(record.id, record.code, OtpPurpose.PASSWORD_RESET)

        assert outcome.failure.kind == FailureKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_concurrent_verification_succeeds_once(self, otp_ledger):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")

        outcomes = await asyncio.gather(*(otp_ledger.verify(record.id, record.code, EMAIL) for _ in range(5)))

        assert sum(1 for o in outcomes if o.ok) == 1
        assert {o.failure.code for o in outcomes if not o.ok} == {"otp_already_used"}


class TestQueries:
    """Tests for pending lookups and cleanup."""

    @pytest.mark.asyncio
    async def test_get_pending_ignores_time_expired(self, otp_ledger, clock):
        record = await otp_ledger.issue(EMAIL, "alice@example.com")
        assert (await otp_ledger.get_pending(EMAIL, "alice@example.com")).id == record.id

        clock.advance(minutes=2)
        assert await otp_ledger.get_pending(EMAIL, "alice@example.com") is None

    @pytest.mark.asyncio
    async def test_not_verified_without_success(self, otp_ledger):
        await otp_ledger.issue(EMAIL, "alice@example.com")

        assert not await otp_ledger.is_verified(EMAIL, "alice@example.com")

    @pytest.mark.asyncio
    async def test_cleanup_purges_past_retention(self, otp_ledger, otp_repo, clock):
        old = await otp_ledger.issue(EMAIL, "alice@example.com")
        clock.advance(hours=25)
        fresh = await otp_ledger.issue(EMAIL, "bob@example.com")

        removed = await otp_ledger.cleanup()

        assert removed == 1
        assert await otp_repo.get(old.id) is None
        assert await otp_repo.get(fresh.id) is not None
