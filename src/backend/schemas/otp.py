"""
One-time code schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OtpPurpose(str, Enum):
    """What a one-time code proves."""

    EMAIL_VERIFICATION = "email_verification"
    PHONE_VERIFICATION = "phone_verification"
    PASSWORD_RESET = "password_reset"
    LOGIN = "login"

    @property
    def is_phone(self) -> bool:
        return self is OtpPurpose.PHONE_VERIFICATION


class OtpStatus(str, Enum):
    """Lifecycle state of a one-time code. Everything but PENDING is terminal."""

    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    FAILED = "failed"


class OtpRecord(BaseModel):
    """A stored one-time code."""

    model_config = ConfigDict(frozen=True)

    id: str
    purpose: OtpPurpose
    subject: str  # normalized email or phone
    code: str = Field(..., pattern=r"^\d{6}$")
    status: OtpStatus = OtpStatus.PENDING
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    ip_address: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    verified_at: Optional[datetime] = None

    @model_validator(mode="after")
    def attempts_within_limit(self) -> "OtpRecord":
        if self.attempts > self.max_attempts:
            raise ValueError("attempts cannot exceed max_attempts")
        return self

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    def is_expired_at(self, now: datetime) -> bool:
        return now > self.expires_at


class OtpIssueResult(BaseModel):
    """Returned to the caller after a code is issued. The code itself is only dispatched."""

    id: str
    expires_in_seconds: int


class OtpVerification(BaseModel):
    """Successful verification of a one-time code."""

    verified: bool = True
    purpose: OtpPurpose
    subject: str
    attempts_remaining: int = 0
