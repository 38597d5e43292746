"""
Fraud-related Pydantic schemas.

Scores are 0-100. A result is fraudulent when its score reaches
FRAUD_SCORE_THRESHOLD (50); the model validator keeps the two consistent.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FRAUD_SCORE_THRESHOLD = 50
MAX_SCORE = 100


class FraudReason(str, Enum):
    """Reason a signal contributed to a fraud score."""

    FAKE_EMAIL = "fake_email"
    DISPOSABLE_EMAIL = "disposable_email"
    INVALID_MX_RECORD = "invalid_mx_record"
    FAKE_PHONE = "fake_phone"
    VOIP_NUMBER = "voip_number"
    VIRTUAL_SIM = "virtual_sim"
    INVALID_CARRIER = "invalid_carrier"
    RECYCLED_NUMBER = "recycled_number"
    VPN_IP = "vpn_ip"
    PROXY_IP = "proxy_ip"
    TOR_IP = "tor_ip"
    BLACKLISTED_IP = "blacklisted_ip"
    HIGH_RISK_COUNTRY = "high_risk_country"
    BRUTEFORCE_ATTEMPT = "bruteforce_attempt"
    MULTIPLE_ACCOUNTS_SAME_IP = "multiple_accounts_same_ip"


class SignalType(str, Enum):
    """Kind of value being scored."""

    EMAIL = "email"
    PHONE = "phone"
    IP = "ip"


class FraudContext(str, Enum):
    """Where a fraud log event was raised."""

    REGISTRATION = "registration"
    LOGIN = "login"
    OTP = "otp"
    ADMIN = "admin"


class FraudCheckResult(BaseModel):
    """Verdict for one scored signal. Never persisted by the scorer."""

    model_config = ConfigDict(frozen=True)

    signal: SignalType
    value: str
    score: int = 0
    is_fraud: bool = False
    reasons: list[FraudReason] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    # A provider failed and its heuristic contributed nothing
    degraded: bool = False
    confidence: float = Field(1.0, ge=0.0, le=1.0)

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v: int) -> int:
        return max(0, min(int(v), MAX_SCORE))

    @field_validator("reasons")
    @classmethod
    def unique_reasons(cls, v: list[FraudReason]) -> list[FraudReason]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def fraud_matches_score(self) -> "FraudCheckResult":
        if self.is_fraud != (self.score >= FRAUD_SCORE_THRESHOLD):
            raise ValueError("is_fraud must be true exactly when score >= 50")
        return self

    @classmethod
    def build(
        cls,
        signal: SignalType,
        value: str,
        score: int,
        reasons: list[FraudReason],
        details: Optional[dict[str, Any]] = None,
        degraded: bool = False,
        confidence: float = 1.0,
    ) -> "FraudCheckResult":
        """Create a result with ``is_fraud`` derived from the clamped score."""
        clamped = max(0, min(score, MAX_SCORE))
        return cls(
            signal=signal,
            value=value,
            score=clamped,
            is_fraud=clamped >= FRAUD_SCORE_THRESHOLD,
            reasons=reasons,
            details=details or {},
            degraded=degraded,
            confidence=confidence,
        )


class IpReputation(BaseModel):
    """IP intelligence returned by a reputation provider."""

    model_config = ConfigDict(frozen=True)

    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    country: Optional[str] = None
    isp: Optional[str] = None


class CarrierInfo(BaseModel):
    """Carrier lookup for a phone number."""

    model_config = ConfigDict(frozen=True)

    valid: bool = True
    is_voip: bool = False
    is_virtual: bool = False
    is_recycled: bool = False
    carrier_name: Optional[str] = None


class FraudLogEntry(BaseModel):
    """A fraud event handed to the external fraud log."""

    model_config = ConfigDict(frozen=True)

    id: str
    ip_address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    reason: FraudReason
    score: int = Field(0, ge=0, le=MAX_SCORE)
    context: FraudContext
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
