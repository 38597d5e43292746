"""Schemas module initialization."""

from schemas.account import Account, AccountStatus
from schemas.auth import LoginRequest, MfaSetup, RegisterRequest, RegistrationResult, TokenPair
from schemas.fraud import CarrierInfo, FraudCheckResult, FraudContext, FraudLogEntry, FraudReason, IpReputation, SignalType
from schemas.otp import OtpIssueResult, OtpPurpose, OtpRecord, OtpStatus, OtpVerification
from schemas.security import BlockedIpRecord, LoginAttemptRecord, VerificationStatus, VerificationSummary

__all__ = [
    "Account",
    "AccountStatus",
    "RegisterRequest",
    "LoginRequest",
    "TokenPair",
    "RegistrationResult",
    "MfaSetup",
    "FraudReason",
    "FraudContext",
    "FraudCheckResult",
    "FraudLogEntry",
    "SignalType",
    "IpReputation",
    "CarrierInfo",
    "OtpPurpose",
    "OtpStatus",
    "OtpRecord",
    "OtpIssueResult",
    "OtpVerification",
    "BlockedIpRecord",
    "LoginAttemptRecord",
    "VerificationStatus",
    "VerificationSummary",
]
