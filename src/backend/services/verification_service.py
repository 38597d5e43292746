"""
Login eligibility aggregation.

Combines IP blocks, code verification, IP fraud score, attempt history, device
trust and account state into one ``VerificationStatus``. Every check runs even
after an earlier one fails, so the verdict always carries the complete list
of reasons.
"""

from typing import Optional

import structlog

from core.clock import Clock, utc_now
from core.config import settings
from core.errors import Outcome, not_found
from repositories.provider import AccountRepositoryProtocol, FraudLogRepositoryProtocol
from schemas.account import Account, AccountStatus
from schemas.fraud import FraudContext, FraudReason
from schemas.otp import OtpPurpose
from schemas.security import VerificationStatus, VerificationSummary
from services import account_policy
from services.device_trust import DeviceTrustRegistry
from services.fraud_detection import FraudScorer, log_fraud_event, primary_reason
from services.ip_blocker import IpBlockRegistry
from services.login_attempts import LoginAttemptTracker, attempt_key
from services.otp_service import OtpLedger

logger = structlog.get_logger(__name__)


class VerificationAggregator:
    """Decides whether an identity may log in from an IP right now."""

    def __init__(
        self,
        accounts: AccountRepositoryProtocol,
        fraud_log: FraudLogRepositoryProtocol,
        scorer: FraudScorer,
        ip_blocker: IpBlockRegistry,
        otp_ledger: OtpLedger,
        attempt_tracker: LoginAttemptTracker,
        device_trust: DeviceTrustRegistry,
        clock: Clock = utc_now,
    ):
        self.accounts = accounts
        self.fraud_log = fraud_log
        self.scorer = scorer
        self.ip_blocker = ip_blocker
        self.otp_ledger = otp_ledger
        self.attempt_tracker = attempt_tracker
        self.device_trust = device_trust
        self.clock = clock

    async def check_login_eligibility(
        self,
        identity: str,
        ip_address: str,
        device_fingerprint: Optional[str] = None,
    ) -> VerificationStatus:
        """
        Run every login check and return the combined verdict.

        An unexpected failure (store or repository outage) yields an all-false
        verdict rather than letting the login through.
        """
        try:
            return await self._check(identity, ip_address, device_fingerprint)
        except Exception:
            logger.exception("login_eligibility_check_failed", ip=ip_address[:8])
            return VerificationStatus.denied("Security check failed. Please try again.", "security_check_failed")

    async def _check(
        self,
        identity: str,
        ip_address: str,
        device_fingerprint: Optional[str],
    ) -> VerificationStatus:
        reasons: list[str] = []
        codes: list[str] = []
        now = self.clock()

        # 1. Account
        account = await self.accounts.find_by_identity(identity)
        if account is None:
            return VerificationStatus.denied("Account not found", "account_not_found")

        fraud_check_passed = True
        session_valid = True

        # 2. IP block
        ip_clean = not await self.ip_blocker.is_blocked(ip_address)
        if not ip_clean:
            reasons.append("IP address is blocked due to suspicious activity")
            codes.append("ip_blocked")
            await log_fraud_event(
                self.fraud_log,
                FraudReason.BLACKLISTED_IP,
                FraudContext.LOGIN,
                ip_address=ip_address,
                email=account.email,
                details={"blocked": True},
                clock=self.clock,
            )

        # 3. Contact verification
        email_verified = await self.otp_ledger.is_verified(OtpPurpose.EMAIL_VERIFICATION, account.email)
        if not email_verified:
            reasons.append("Email not verified")
            codes.append("email_not_verified")

        phone_verified: Optional[bool] = None
        if account.phone:
            phone_verified = await self.otp_ledger.is_verified(OtpPurpose.PHONE_VERIFICATION, account.phone)
            if not phone_verified:
                reasons.append("Mobile number not verified")
                codes.append("phone_not_verified")

        # 4. IP fraud score
        ip_check = await self.scorer.score_ip(ip_address, account.email)
        if ip_check.is_fraud:
            fraud_check_passed = False
            reasons.append("Suspicious activity detected from this network")
            codes.extend(f"ip_fraud:{reason.value}" for reason in ip_check.reasons)
            await log_fraud_event(
                self.fraud_log,
                primary_reason(ip_check, FraudReason.BLACKLISTED_IP),
                FraudContext.LOGIN,
                ip_address=ip_address,
                email=account.email,
                phone=account.phone,
                score=ip_check.score,
                details=ip_check.details,
                clock=self.clock,
            )

        # 5. Brute force / burst on this identity from this IP
        key = attempt_key(account.email, ip_address)
        brute_force = await self.attempt_tracker.is_brute_force(key)
        burst = await self.attempt_tracker.is_burst(key)
        if brute_force or burst:
            fraud_check_passed = False
            ip_clean = False
            reasons.append("Too many login attempts. Please try again later.")
            codes.append("bruteforce_detected" if brute_force else "burst_detected")
            await self.ip_blocker.block(ip_address, "Bruteforce attack detected", settings.IP_BLOCK_DEFAULT_HOURS)

        # 6. Device trust (advisory)
        if device_fingerprint:
            if not await self.device_trust.observe(device_fingerprint):
                session_valid = False
                reasons.append("Unrecognized device. Additional verification required.")
                codes.append("device_unrecognized")

        # 7. Account state
        if account.status == AccountStatus.SUSPENDED:
            session_valid = False
            reasons.append("Account is temporarily locked. Please contact support.")
            codes.append("account_suspended")
        if account_policy.is_account_locked(account, now):
            session_valid = False
            reasons.append("Account is temporarily locked. Please try again later.")
            codes.append("account_locked")

        status = VerificationStatus(
            email_verified=email_verified,
            phone_verified=phone_verified,
            fraud_check_passed=fraud_check_passed,
            ip_clean=ip_clean,
            session_valid=session_valid,
            failure_reasons=reasons,
            reason_codes=codes,
        )
        logger.info(
            "login_eligibility_checked",
            account_id=account.id,
            ip=ip_address[:8],
            can_login=status.can_login,
            reason_codes=codes,
        )
        return status

    # =========================================================================
    # Account freeze
    # =========================================================================

    async def freeze_account(self, identity: str, minutes: Optional[int] = None) -> Outcome:
        """Suspend an account for ``minutes`` (default ACCOUNT_FREEZE_MINUTES)."""
        account = await self.accounts.find_by_identity(identity)
        if account is None:
            return Outcome.fail(not_found("account_not_found", "Account not found"))

        frozen = account_policy.freeze_account(account, self.clock(), minutes)
        await self.accounts.save(frozen)
        logger.warning("account_frozen", account_id=account.id, locked_until=frozen.locked_until.isoformat())
        return Outcome.success(frozen)

    async def unfreeze_account(self, identity: str) -> Outcome:
        account = await self.accounts.find_by_identity(identity)
        if account is None:
            return Outcome.fail(not_found("account_not_found", "Account not found"))

        unfrozen = account_policy.unfreeze_account(account)
        await self.accounts.save(unfrozen)
        logger.info("account_unfrozen", account_id=account.id)
        return Outcome.success(unfrozen)

    async def get_verification_summary(self, identity: str) -> Outcome:
        """Admin view of an account's verification state."""
        account = await self.accounts.find_by_identity(identity)
        if account is None:
            return Outcome.fail(not_found("account_not_found", "Account not found"))
        return Outcome.success(await self._summarize(account))

    async def _summarize(self, account: Account) -> VerificationSummary:
        email_verified = await self.otp_ledger.is_verified(OtpPurpose.EMAIL_VERIFICATION, account.email)
        phone_verified = None
        if account.phone:
            phone_verified = await self.otp_ledger.is_verified(OtpPurpose.PHONE_VERIFICATION, account.phone)

        pending = []
        for purpose in OtpPurpose:
            subject = account.phone if purpose.is_phone else account.email
            if subject and await self.otp_ledger.get_pending(purpose, subject):
                pending.append(purpose.value)

        return VerificationSummary(
            account_id=account.id,
            email=account.email,
            email_verified=email_verified,
            phone=account.phone,
            phone_verified=phone_verified,
            status=account.status.value,
            mfa_enabled=account.mfa_enabled,
            failed_login_attempts=account.failed_login_attempts,
            locked_until=account.locked_until,
            last_login_at=account.last_login_at,
            last_login_ip=account.last_login_ip,
            pending_codes=pending,
        )
