"""
Security service facade.

The single entry point the HTTP layer calls: fraud checks, one-time codes,
login eligibility and IP block administration. Inputs are validated here and
every rejection comes back as an ``Outcome`` failure.
"""

import ipaddress
from typing import Any, Optional

import structlog
from pydantic import EmailStr, TypeAdapter, ValidationError

from core.config import settings
from core.errors import Outcome, forbidden, rate_limited, validation_error
from repositories.provider import FraudLogRepositoryProtocol
from schemas.auth import PHONE_PATTERN
from schemas.fraud import FraudContext, FraudReason
from schemas.otp import OtpIssueResult, OtpPurpose
from schemas.security import BlockedIpRecord, VerificationStatus
from services.fraud_detection import FraudScorer, log_fraud_event, primary_reason
from services.ip_blocker import IpBlockRegistry
from services.login_attempts import LoginAttemptTracker
from services.notification_service import NotificationChannel, NotificationDispatcher
from services.otp_service import OtpLedger, is_trivial_code, normalize_subject
from services.verification_service import VerificationAggregator

logger = structlog.get_logger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def is_valid_email(value: str) -> bool:
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class SecurityService:
    """Facade over the fraud, code, attempt and block services."""

    def __init__(
        self,
        scorer: FraudScorer,
        ip_blocker: IpBlockRegistry,
        otp_ledger: OtpLedger,
        attempt_tracker: LoginAttemptTracker,
        verifier: VerificationAggregator,
        notifier: NotificationDispatcher,
        fraud_log: FraudLogRepositoryProtocol,
    ):
        self.scorer = scorer
        self.ip_blocker = ip_blocker
        self.otp_ledger = otp_ledger
        self.attempt_tracker = attempt_tracker
        self.verifier = verifier
        self.notifier = notifier
        self.fraud_log = fraud_log

    # =========================================================================
    # Fraud checks
    # =========================================================================

    async def check_email(self, email: str) -> Outcome:
        if not email or not is_valid_email(email.strip()):
            return Outcome.fail(validation_error("invalid_email", "A valid email address is required"))
        return Outcome.success(await self.scorer.score_email(email))

    async def check_phone(self, phone: str) -> Outcome:
        if not phone or not PHONE_PATTERN.match(phone.strip()):
            return Outcome.fail(validation_error("invalid_phone", "A valid phone number is required"))
        return Outcome.success(await self.scorer.score_phone(phone))

    async def check_ip(self, ip_address: str) -> Outcome:
        if not ip_address or not is_valid_ip(ip_address.strip()):
            return Outcome.fail(validation_error("invalid_ip", "A valid IP address is required"))
        ip_address = ip_address.strip()
        result = await self.scorer.score_ip(ip_address)
        is_blocked = await self.ip_blocker.is_blocked(ip_address)
        return Outcome.success(result.model_copy(update={"details": {**result.details, "is_blocked": is_blocked}}))

    # =========================================================================
    # One-time codes
    # =========================================================================

    async def generate_otp(
        self,
        purpose: OtpPurpose,
        subject: str,
        ip_address: Optional[str] = None,
    ) -> Outcome:
        """
        Issue a code for ``subject`` and dispatch it.

        Returns:
            Outcome[OtpIssueResult] (the code itself is never returned)
        """
        subject = (subject or "").strip()
        by_email = "@" in subject
        if purpose == OtpPurpose.EMAIL_VERIFICATION and not by_email:
            return Outcome.fail(validation_error("invalid_email", "A valid email address is required"))
        if purpose == OtpPurpose.PHONE_VERIFICATION and by_email:
            return Outcome.fail(validation_error("invalid_phone", "A valid phone number is required"))
        if by_email and not is_valid_email(subject):
            return Outcome.fail(validation_error("invalid_email", "A valid email address is required"))
        if not by_email and not PHONE_PATTERN.match(subject):
            return Outcome.fail(validation_error("invalid_phone", "A valid phone number is required"))

        request_key = f"otp:{normalize_subject(subject)}:{ip_address or 'unknown'}"
        # The slot is taken before scoring, so a rejected request still counts
        reserved, recent = await self.attempt_tracker.reserve(
            request_key, settings.OTP_REQUEST_WINDOW_MINUTES, settings.OTP_REQUEST_LIMIT, "otp_requested"
        )
        if not reserved:
            logger.warning("otp_request_rate_limited", purpose=purpose.value, ip=(ip_address or "")[:8])
            return Outcome.fail(rate_limited("otp_rate_limited", requests=recent))

        if by_email:
            email_check = await self.scorer.score_email(subject)
            if email_check.is_fraud:
                return Outcome.fail(
                    forbidden(
                        "email_fraud_suspected",
                        "Email validation failed. Please use a different email.",
                        reasons=[r.value for r in email_check.reasons],
                    )
                )
        else:
            if ip_address and await self.ip_blocker.is_blocked(ip_address):
                return Outcome.fail(
                    forbidden("ip_blocked", "Your IP has been temporarily blocked due to suspicious activity")
                )
            phone_check = await self.scorer.score_phone(subject)
            if phone_check.is_fraud:
                await log_fraud_event(
                    self.fraud_log,
                    primary_reason(phone_check, FraudReason.FAKE_PHONE),
                    FraudContext.OTP,
                    ip_address=ip_address,
                    phone=subject,
                    score=phone_check.score,
                    details=phone_check.details,
                )
                if ip_address:
                    await self.ip_blocker.block(ip_address, "Fake phone number attempt")
                return Outcome.fail(
                    forbidden(
                        "phone_fraud_suspected",
                        "Phone validation failed. Please use a valid phone number.",
                        reasons=[r.value for r in phone_check.reasons],
                    )
                )

        record = await self.otp_ledger.issue(purpose, subject, ip_address)

        channel = NotificationChannel.EMAIL if by_email else NotificationChannel.SMS
        self.notifier.send_code(channel, subject, record.code)

        return Outcome.success(
            OtpIssueResult(id=record.id, expires_in_seconds=int((record.expires_at - record.created_at).total_seconds()))
        )

    async def verify_otp(self, otp_id: str, code: str, purpose: OtpPurpose) -> Outcome:
        """Verify a code. Returns Outcome[OtpVerification]."""
        if not otp_id or not code:
            return Outcome.fail(validation_error("otp_fields_required", "Code ID and code are required"))
        code = code.strip()
        if not code.isdigit() or len(code) != 6:
            return Outcome.fail(validation_error("otp_code_malformed", "Invalid code"))

        if is_trivial_code(code):
            logger.warning("suspicious_otp_code", otp_id=otp_id, purpose=purpose.value)

        return await self.otp_ledger.verify(otp_id, code, purpose)

    # =========================================================================
    # Login eligibility
    # =========================================================================

    async def check_login_eligibility(
        self,
        identity: str,
        ip_address: str,
        device_fingerprint: Optional[str] = None,
    ) -> VerificationStatus:
        return await self.verifier.check_login_eligibility(identity, ip_address, device_fingerprint)

    # =========================================================================
    # IP blocks
    # =========================================================================

    async def block_ip(
        self,
        ip_address: str,
        reason: str,
        duration_hours: Optional[float] = None,
    ) -> Outcome:
        """Returns Outcome[BlockedIpRecord]."""
        if not ip_address or not is_valid_ip(ip_address.strip()):
            return Outcome.fail(validation_error("invalid_ip", "A valid IP address is required"))
        try:
            record = await self.ip_blocker.block(ip_address.strip(), reason or "Blocked by administrator", duration_hours)
        except ValueError as e:
            return Outcome.fail(validation_error("invalid_duration", str(e)))
        return Outcome.success(record)

    async def unblock_ip(self, ip_address: str) -> Outcome:
        """Returns Outcome[bool] - False when the IP was not blocked."""
        if not ip_address or not is_valid_ip(ip_address.strip()):
            return Outcome.fail(validation_error("invalid_ip", "A valid IP address is required"))
        return Outcome.success(await self.ip_blocker.unblock(ip_address.strip()))

    async def list_blocked_ips(self) -> list[BlockedIpRecord]:
        return await self.ip_blocker.list_active()

    async def ip_status(self, ip_address: str) -> Outcome:
        if not ip_address or not is_valid_ip(ip_address.strip()):
            return Outcome.fail(validation_error("invalid_ip", "A valid IP address is required"))
        record = await self.ip_blocker.get(ip_address.strip())
        status: dict[str, Any] = {
            "ip_address": ip_address.strip(),
            "is_blocked": record is not None,
            "block_record": record,
        }
        return Outcome.success(status)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def run_maintenance(self) -> dict[str, int]:
        """Sweep expired IP blocks and purge old one-time codes."""
        expired_blocks = await self.ip_blocker.sweep_expired()
        purged_otps = await self.otp_ledger.cleanup()
        logger.info("maintenance_completed", expired_blocks=expired_blocks, purged_otps=purged_otps)
        return {"expired_blocks": expired_blocks, "purged_otps": purged_otps}
