"""
Authentication orchestration: registration, login, token refresh, logout and MFA.

Every rejection is returned as an ``Outcome`` failure with a generic
user-facing message; scoring detail only goes to ``detail`` and the logs.
"""

import asyncio
import uuid
from datetime import timedelta
from typing import Optional

import structlog

from core.clock import Clock, utc_now
from core.config import settings
from core.errors import (
    Outcome,
    conflict,
    forbidden,
    not_found,
    rate_limited,
    unauthorized,
    validation_error,
)
from core.security import (
    TokenIssuer,
    build_provisioning_uri,
    generate_totp_secret,
    hash_password,
    hash_token,
    verify_password,
    verify_totp,
)
from repositories.provider import AccountRepositoryProtocol, FraudLogRepositoryProtocol
from schemas.account import Account, AccountStatus
from schemas.auth import LoginRequest, MfaSetup, RegisterRequest, RegistrationResult, TokenPair
from schemas.fraud import FraudContext, FraudReason
from services import account_policy
from services.fraud_detection import FraudScorer, log_fraud_event, primary_reason
from services.ip_blocker import IpBlockRegistry
from services.login_attempts import LoginAttemptTracker, attempt_key
from services.verification_service import VerificationAggregator

logger = structlog.get_logger(__name__)

GENERIC_REGISTRATION_REJECTION = "Registration is not available from this network"
ACCOUNT_LOCKED_MESSAGE = "Account temporarily locked"


class AuthOrchestrator:
    """Drives account registration and login on top of the security services."""

    def __init__(
        self,
        accounts: AccountRepositoryProtocol,
        fraud_log: FraudLogRepositoryProtocol,
        scorer: FraudScorer,
        ip_blocker: IpBlockRegistry,
        attempt_tracker: LoginAttemptTracker,
        verifier: VerificationAggregator,
        token_issuer: TokenIssuer,
        clock: Clock = utc_now,
    ):
        self.accounts = accounts
        self.fraud_log = fraud_log
        self.scorer = scorer
        self.ip_blocker = ip_blocker
        self.attempt_tracker = attempt_tracker
        self.verifier = verifier
        self.token_issuer = token_issuer
        self.clock = clock

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(self, request: RegisterRequest, ip_address: str) -> Outcome:
        """
        Create an account after screening the IP (and optionally the contacts).

        Rejections escalate with the IP score: blocked IP, soft rejection at
        the fraud threshold, automatic 24h block for Tor, blacklisted ranges or
        scores at IP_AUTO_BLOCK_SCORE.
        """
        email = request.email.lower()

        if await self.ip_blocker.is_blocked(ip_address):
            await log_fraud_event(
                self.fraud_log,
                FraudReason.BLACKLISTED_IP,
                FraudContext.REGISTRATION,
                ip_address=ip_address,
                email=email,
                details={"blocked": True},
                clock=self.clock,
            )
            return Outcome.fail(forbidden("ip_blocked", GENERIC_REGISTRATION_REJECTION))

        ip_check = await self.scorer.score_ip(ip_address)
        if ip_check.is_fraud:
            await log_fraud_event(
                self.fraud_log,
                primary_reason(ip_check, FraudReason.BLACKLISTED_IP),
                FraudContext.REGISTRATION,
                ip_address=ip_address,
                email=email,
                phone=request.phone,
                score=ip_check.score,
                details=ip_check.details,
                clock=self.clock,
            )
            severe = (
                FraudReason.TOR_IP in ip_check.reasons
                or FraudReason.BLACKLISTED_IP in ip_check.reasons
                or ip_check.score >= settings.IP_AUTO_BLOCK_SCORE
            )
            if severe:
                await self.ip_blocker.block(ip_address, "Fraudulent registration attempt")
                return Outcome.fail(
                    forbidden("ip_auto_blocked", GENERIC_REGISTRATION_REJECTION, score=ip_check.score)
                )
            return Outcome.fail(
                forbidden("ip_fraud_suspected", GENERIC_REGISTRATION_REJECTION, score=ip_check.score)
            )

        if settings.REGISTRATION_SCREEN_CONTACTS:
            email_check = await self.scorer.score_email(email)
            if email_check.is_fraud:
                return Outcome.fail(
                    forbidden(
                        "email_fraud_suspected",
                        "This email address cannot be used",
                        reasons=[r.value for r in email_check.reasons],
                    )
                )
            if request.phone:
                phone_check = await self.scorer.score_phone(request.phone)
                if phone_check.is_fraud:
                    await log_fraud_event(
                        self.fraud_log,
                        primary_reason(phone_check, FraudReason.FAKE_PHONE),
                        FraudContext.REGISTRATION,
                        ip_address=ip_address,
                        email=email,
                        phone=request.phone,
                        score=phone_check.score,
                        details=phone_check.details,
                        clock=self.clock,
                    )
                    await self.ip_blocker.block(ip_address, "Fraudulent phone number at registration")
                    return Outcome.fail(
                        forbidden(
                            "phone_fraud_suspected",
                            "This phone number cannot be used",
                            reasons=[r.value for r in phone_check.reasons],
                        )
                    )

        if await self.accounts.find_by_identity(email) is not None:
            return Outcome.fail(conflict("email_taken", "An account with this email already exists"))

        account = Account(
            id=str(uuid.uuid4()),
            email=email,
            phone=request.phone,
            first_name=request.first_name,
            last_name=request.last_name,
            password_hash=await asyncio.to_thread(hash_password, request.password),
            status=AccountStatus.PENDING_VERIFICATION,
            created_at=self.clock(),
        )
        try:
            await self.accounts.create(account)
        except ValueError:
            # Lost a race with a concurrent registration of the same email
            return Outcome.fail(conflict("email_taken", "An account with this email already exists"))

        logger.info("account_registered", account_id=account.id, ip=ip_address[:8])
        return Outcome.success(RegistrationResult(account_id=account.id, email=account.email))

    # =========================================================================
    # Login
    # =========================================================================

    async def login(
        self,
        request: LoginRequest,
        ip_address: str,
        device_fingerprint: Optional[str] = None,
    ) -> Outcome:
        """Authenticate with password (+ TOTP when enabled) and issue a token pair."""
        email = request.email.lower()
        key = attempt_key(email, ip_address)
        now = self.clock()

        if await self.ip_blocker.is_blocked(ip_address):
            return Outcome.fail(forbidden("ip_blocked", "Access denied"))

        if await self.attempt_tracker.is_brute_force(key) or await self.attempt_tracker.is_burst(key):
            await self.ip_blocker.block(ip_address, "Bruteforce attack detected")
            await log_fraud_event(
                self.fraud_log,
                FraudReason.BRUTEFORCE_ATTEMPT,
                FraudContext.LOGIN,
                ip_address=ip_address,
                email=email,
                clock=self.clock,
            )
            return Outcome.fail(rate_limited("bruteforce_detected"))

        account = await self.accounts.find_by_identity(email)
        if account is None:
            await self.attempt_tracker.record_login(email, ip_address, False, "unknown_account")
            return Outcome.fail(unauthorized("invalid_credentials"))

        if not account_policy.can_attempt_login(account, now):
            await self.attempt_tracker.record_login(email, ip_address, False, "account_locked")
            return Outcome.fail(forbidden("account_locked", ACCOUNT_LOCKED_MESSAGE, status=account.status.value))

        # bcrypt runs in a worker thread so other requests keep the event loop
        if not await asyncio.to_thread(verify_password, request.password, account.password_hash):
            updated = account_policy.register_failed_login(account, now)
            await self.accounts.save(updated)
            await self.attempt_tracker.record_login(email, ip_address, False, "invalid_password")
            if account_policy.is_account_locked(updated, now):
                logger.warning("account_locked_out", account_id=account.id, attempts=updated.failed_login_attempts)
            return Outcome.fail(unauthorized("invalid_credentials"))

        if account.mfa_enabled:
            if not request.mfa_code:
                return Outcome.fail(validation_error("mfa_required", "MFA code required"))
            if not verify_totp(account.mfa_secret, request.mfa_code, at=now.timestamp()):
                await self.attempt_tracker.record_login(email, ip_address, False, "invalid_mfa_code")
                return Outcome.fail(unauthorized("invalid_mfa_code", "Invalid MFA code"))

        if settings.LOGIN_REQUIRE_ELIGIBILITY:
            verdict = await self.verifier.check_login_eligibility(email, ip_address, device_fingerprint)
            if not verdict.can_login:
                return Outcome.fail(
                    forbidden(
                        "login_not_eligible",
                        "Additional verification required",
                        reason_codes=verdict.reason_codes,
                        failure_reasons=verdict.failure_reasons,
                    )
                )

        tokens = self._issue_tokens(account)
        updated = account_policy.register_successful_login(account, now, ip_address).model_copy(
            update={"refresh_token_hash": hash_token(tokens.refresh_token)}
        )
        await self.accounts.save(updated)
        await self.attempt_tracker.clear(key)

        logger.info("login_succeeded", account_id=account.id, ip=ip_address[:8], mfa=account.mfa_enabled)
        return Outcome.success(tokens)

    def _issue_tokens(self, account: Account) -> TokenPair:
        access_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        access_token = self.token_issuer.sign({"sub": account.id, "email": account.email, "type": "access"}, access_ttl)
        refresh_token = self.token_issuer.sign(
            {"sub": account.id, "type": "refresh"},
            timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(access_ttl.total_seconds()),
        )

    # =========================================================================
    # Tokens
    # =========================================================================

    async def refresh(self, refresh_token: str) -> Outcome:
        """Exchange a refresh token for a new pair. The old refresh token stops working."""
        claims = self.token_issuer.verify(refresh_token, expected_type="refresh")
        if claims is None or not claims.get("sub"):
            return Outcome.fail(unauthorized("invalid_refresh_token", "Invalid refresh token"))

        account = await self.accounts.find_by_identity(claims["sub"])
        if account is None or account.refresh_token_hash != hash_token(refresh_token):
            logger.warning("refresh_token_rejected", account_id=claims.get("sub"))
            return Outcome.fail(unauthorized("invalid_refresh_token", "Invalid refresh token"))

        if not account_policy.can_attempt_login(account, self.clock()):
            return Outcome.fail(forbidden("account_locked", ACCOUNT_LOCKED_MESSAGE))

        tokens = self._issue_tokens(account)
        await self.accounts.save(account.model_copy(update={"refresh_token_hash": hash_token(tokens.refresh_token)}))
        logger.info("tokens_refreshed", account_id=account.id)
        return Outcome.success(tokens)

    async def logout(self, account_id: str) -> Outcome:
        account = await self.accounts.find_by_identity(account_id)
        if account is None:
            return Outcome.fail(not_found("account_not_found", "Account not found"))
        await self.accounts.save(account.model_copy(update={"refresh_token_hash": None}))
        logger.info("logged_out", account_id=account.id)
        return Outcome.success(True)

    # =========================================================================
    # MFA
    # =========================================================================

    async def setup_mfa(self, account_id: str) -> Outcome:
        """Generate a secret for the account. Nothing is stored until confirmation."""
        account = await self.accounts.find_by_identity(account_id)
        if account is None:
            return Outcome.fail(not_found("account_not_found", "Account not found"))

        secret = generate_totp_secret()
        return Outcome.success(
            MfaSetup(secret=secret, provisioning_uri=build_provisioning_uri(secret, account.email))
        )

    async def confirm_mfa(self, account_id: str, code: str, secret: str) -> Outcome:
        """Enable MFA once the user proves their app produces valid codes for ``secret``."""
        account = await self.accounts.find_by_identity(account_id)
        if account is None:
            return Outcome.fail(not_found("account_not_found", "Account not found"))

        if not verify_totp(secret, code, at=self.clock().timestamp()):
            return Outcome.fail(validation_error("invalid_mfa_code", "Invalid MFA code"))

        await self.accounts.save(account.model_copy(update={"mfa_enabled": True, "mfa_secret": secret}))
        logger.info("mfa_enabled", account_id=account.id)
        return Outcome.success(True)
