"""
Schemas for IP blocks, login attempts and login-eligibility verdicts.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class BlockedIpRecord(BaseModel):
    """A time-bounded IP block. Re-blocking replaces the record."""

    model_config = ConfigDict(frozen=True)

    ip_address: str
    reason: str
    blocked_at: datetime
    unblock_at: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def unblock_after_block(self) -> "BlockedIpRecord":
        if self.unblock_at <= self.blocked_at:
            raise ValueError("unblock_at must be after blocked_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        """A block is over from ``unblock_at`` onwards."""
        return now >= self.unblock_at


class LoginAttemptRecord(BaseModel):
    """One login attempt in a sliding window."""

    model_config = ConfigDict(frozen=True)

    key: str
    timestamp: datetime
    success: bool
    reason: Optional[str] = None


class VerificationStatus(BaseModel):
    """
    Login-eligibility verdict.

    ``can_login`` is derived from the other flags and cannot be set directly.
    ``failure_reasons`` are safe to show to the user; ``reason_codes`` are for
    internal and admin callers.
    """

    model_config = ConfigDict(frozen=True)

    email_verified: bool = False
    phone_verified: Optional[bool] = None  # None when the account has no phone
    fraud_check_passed: bool = False
    ip_clean: bool = False
    session_valid: bool = False
    failure_reasons: list[str] = Field(default_factory=list)
    reason_codes: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_login(self) -> bool:
        return (
            self.email_verified
            and self.phone_verified is not False
            and self.fraud_check_passed
            and self.ip_clean
            and self.session_valid
        )

    @classmethod
    def denied(cls, reason: str, code: str) -> "VerificationStatus":
        """All-false verdict with a single reason."""
        return cls(
            email_verified=False,
            phone_verified=False,
            fraud_check_passed=False,
            ip_clean=False,
            session_valid=False,
            failure_reasons=[reason],
            reason_codes=[code],
        )


class VerificationSummary(BaseModel):
    """Admin view of an account's verification state."""

    account_id: str
    email: str
    email_verified: bool
    phone: Optional[str] = None
    phone_verified: Optional[bool] = None
    status: str
    mfa_enabled: bool = False
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    last_login_ip: Optional[str] = None
    pending_codes: list[str] = Field(default_factory=list)
