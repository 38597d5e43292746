"""
Tests for the security service facade.

Tests input validation, code issuing with rate limiting and fraud screening,
code verification and IP block administration.
"""

import asyncio
import os

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")

from core.errors import FailureKind
from schemas.fraud import CarrierInfo, FraudContext
from schemas.otp import OtpPurpose
from services.notification_service import NotificationChannel
from services.security_service import is_valid_email, is_valid_ip

IP = "8.8.8.8"


class TestValidators:
    @pytest.mark.unit
    def test_is_valid_email(self):
        assert is_valid_email("alice@example.com")
        assert not is_valid_email("alice@")
        assert not is_valid_email("not an email")

    @pytest.mark.unit
    def test_is_valid_ip(self):
        assert is_valid_ip("8.8.8.8")
        assert is_valid_ip("2001:db8::1")
        assert not is_valid_ip("999.1.1.1")


class TestFraudChecks:
    """Tests for the signal check endpoints."""

    @pytest.mark.asyncio
    async def test_check_email(self, security_service):
        outcome = await security_service.check_email("test123456789@mailinator.com")

        assert outcome.ok
        assert outcome.value.score == 70
        assert outcome.value.is_fraud is True

    @pytest.mark.asyncio
    async def test_check_email_invalid(self, security_service):
        outcome = await security_service.check_email("nope")

        assert outcome.failure.kind == FailureKind.VALIDATION
        assert outcome.failure.code == "invalid_email"
        assert outcome.failure.http_status == 400

    @pytest.mark.asyncio
    async def test_check_phone_invalid(self, security_service):
        outcome = await security_service.check_phone("call me")

        assert outcome.failure.code == "invalid_phone"

    @pytest.mark.asyncio
    async def test_check_ip_reports_block(self, security_service, ip_blocker):
        await ip_blocker.block(IP, "manual")

        outcome = await security_service.check_ip(IP)

        assert outcome.value.details["is_blocked"] is True
        assert outcome.value.score == 0

    @pytest.mark.asyncio
    async def test_check_ip_invalid(self, security_service):
        outcome = await security_service.check_ip("not-an-ip")

        assert outcome.failure.code == "invalid_ip"


class TestGenerateOtp:
    """Tests for issuing codes."""

    @pytest.mark.asyncio
    async def test_email_code_issued_and_dispatched(self, security_service, notifier):
        outcome = await security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "alice@example.com", IP)

        assert outcome.ok
        assert outcome.value.expires_in_seconds == 60
        channel, destination, code = notifier.sent[0]
        assert channel == NotificationChannel.EMAIL
        assert destination == "alice@example.com"
        assert len(code) == 6
        # The code is only dispatched, never returned
        assert "code" not in outcome.value.model_dump()

    @pytest.mark.asyncio
    async def test_sms_code(self, security_service, notifier):
        outcome = await security_service.generate_otp(OtpPurpose.PHONE_VERIFICATION, "+14155550123", IP)

        assert outcome.ok
        assert notifier.sent[0][0] == NotificationChannel.SMS

    @pytest.mark.asyncio
    async def test_subject_must_match_purpose(self, security_service):
        phone_for_email = await security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "+14155550123", IP)
        email_for_phone = await security_service.generate_otp(OtpPurpose.PHONE_VERIFICATION, "alice@example.com", IP)

        assert phone_for_email.failure.code == "invalid_email"
        assert email_for_phone.failure.code == "invalid_phone"

    @pytest.mark.asyncio
    async def test_rate_limited_after_five_requests(self, security_service, notifier, clock):
        for _ in range(5):
            outcome = await security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "alice@example.com", IP)
            assert outcome.ok
            clock.advance(seconds=10)

        limited = await security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "alice@example.com", IP)

        assert limited.failure.kind == FailureKind.RATE_LIMITED
        assert limited.failure.retryable is True
        assert len(notifier.sent) == 5

        clock.advance(minutes=5)
        again = await security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "alice@example.com", IP)
        assert again.ok

    @pytest.mark.asyncio
    async def test_rate_limit_holds_under_concurrent_requests(self, security_service, mx_resolver, notifier):
        async def slow_resolve_mx(domain):
            await asyncio.sleep(0.01)
            return True

        mx_resolver.resolve_mx = slow_resolve_mx

        outcomes = await asyncio.gather(
            *(security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "bob@example.com", IP) for _ in range(20))
        )

        assert sum(1 for o in outcomes if o.ok) == 5
        assert all(o.failure.kind == FailureKind.RATE_LIMITED for o in outcomes if not o.ok)
        assert len(notifier.sent) == 5

    @pytest.mark.asyncio
    async def test_rejected_request_still_counts(self, security_service):
        for _ in range(5):
            outcome = await security_service.generate_otp(
                OtpPurpose.EMAIL_VERIFICATION, "test123456789@mailinator.com", IP
            )
            assert outcome.failure.code == "email_fraud_suspected"

        limited = await security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "test123456789@mailinator.com", IP)

        assert limited.failure.code == "otp_rate_limited"

    @pytest.mark.asyncio
    async def test_fraudulent_email_rejected(self, security_service, notifier):
        outcome = await security_service.generate_otp(
            OtpPurpose.EMAIL_VERIFICATION, "test123456789@mailinator.com", IP
        )

        assert outcome.failure.kind == FailureKind.FORBIDDEN
        assert outcome.failure.code == "email_fraud_suspected"
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_fraudulent_phone_blocks_ip(self, security_service, carrier_lookup, ip_blocker, fraud_log):
        carrier_lookup.info = CarrierInfo(valid=True, is_voip=True)

        outcome = await security_service.generate_otp(OtpPurpose.PHONE_VERIFICATION, "+14155550123", IP)

        assert outcome.failure.code == "phone_fraud_suspected"
        assert await ip_blocker.is_blocked(IP)
        entries = await fraud_log.list_by_ip(IP)
        assert entries[0].context == FraudContext.OTP

        carrier_lookup.info = CarrierInfo()
        blocked = await security_service.generate_otp(OtpPurpose.PHONE_VERIFICATION, "+14155550199", IP)
        assert blocked.failure.code == "ip_blocked"


class TestVerifyOtp:
    """Tests for verifying codes through the facade."""

    @pytest.mark.asyncio
    async def test_round_trip(self, security_service, notifier):
        issued = await security_service.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "alice@example.com", IP)
        code = notifier.sent[0][2]

        outcome = await security_service.verify_otp(issued.value.id, code, OtpPurpose.EMAIL_VERIFICATION)

        assert outcome.ok
        assert outcome.value.subject == "alice@example.com"

    @pytest.mark.asyncio
    async def test_missing_fields(self, security_service):
        outcome = await security_service.verify_otp("", "123456", OtpPurpose.EMAIL_VERIFICATION)

        assert outcome.failure.code == "otp_fields_required"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["12345", "1234567", "12a456"])
    async def test_malformed_code(self, security_service, code):
        outcome = await security_service.verify_otp("some-id", code, OtpPurpose.EMAIL_VERIFICATION)

        assert outcome.failure.code == "otp_code_malformed"


class TestIpAdministration:
    """Tests for block, unblock, status and listing."""

    @pytest.mark.asyncio
    async def test_block_and_status(self, security_service):
        blocked = await security_service.block_ip(IP, "abuse", 2)
        status = await security_service.ip_status(IP)

        assert blocked.ok
        assert status.value["is_blocked"] is True
        assert status.value["block_record"].reason == "abuse"

    @pytest.mark.asyncio
    async def test_block_validation(self, security_service):
        bad_ip = await security_service.block_ip("nope", "abuse")
        bad_duration = await security_service.block_ip(IP, "abuse", -1)

        assert bad_ip.failure.code == "invalid_ip"
        assert bad_duration.failure.code == "invalid_duration"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hours", [1e-12, float("inf")])
    async def test_unrepresentable_duration_is_a_validation_failure(self, security_service, hours):
        outcome = await security_service.block_ip(IP, "abuse", hours)

        assert outcome.failure.kind == FailureKind.VALIDATION
        assert outcome.failure.code == "invalid_duration"
        assert not (await security_service.ip_status(IP)).value["is_blocked"]

    @pytest.mark.asyncio
    async def test_unblock(self, security_service):
        await security_service.block_ip(IP, "abuse")

        first = await security_service.unblock_ip(IP)
        second = await security_service.unblock_ip(IP)

        assert first.value is True
        assert second.value is False

    @pytest.mark.asyncio
    async def test_list_blocked_ips(self, security_service):
        await security_service.block_ip("10.0.0.1", "a", 5)
        await security_service.block_ip("10.0.0.2", "b", 1)

        listed = await security_service.list_blocked_ips()

        assert [r.ip_address for r in listed] == ["10.0.0.2", "10.0.0.1"]

    @pytest.mark.asyncio
    async def test_run_maintenance(self, security_service, otp_ledger, clock):
        await security_service.block_ip("10.0.0.1", "a", 1)
        await otp_ledger.issue(OtpPurpose.EMAIL_VERIFICATION, "alice@example.com")

        clock.advance(hours=25)
        result = await security_service.run_maintenance()

        assert result == {"expired_blocks": 1, "purged_otps": 1}

    @pytest.mark.asyncio
    async def test_login_eligibility_delegates(self, security_service, make_account, verify_contact):
        await make_account("alice@example.com")
        await verify_contact("alice@example.com")

        status = await security_service.check_login_eligibility("alice@example.com", IP)

        assert status.can_login is True
