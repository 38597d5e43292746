"""
Repository provider for dependency injection.

Accounts, one-time codes and fraud events are owned by external stores. This
module defines the operations the security core needs from them and hands
out the in-memory implementations used for single-node deployments and tests.

Usage:
    from repositories.provider import get_account_repository

    repo = get_account_repository()
    account = await repo.find_by_identity(email)
"""

import logging
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from schemas.account import Account
from schemas.fraud import FraudContext, FraudLogEntry, FraudReason
from schemas.otp import OtpPurpose, OtpRecord, OtpStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Repository Protocols (Interfaces)
# =============================================================================


@runtime_checkable
class AccountRepositoryProtocol(Protocol):
    """Protocol defining account repository operations."""

    async def find_by_identity(self, identity: str) -> Optional[Account]: ...
    async def save(self, account: Account) -> Account: ...
    async def create(self, account: Account) -> Account: ...


@runtime_checkable
class OtpRepositoryProtocol(Protocol):
    """Protocol defining one-time code repository operations."""

    async def get(self, otp_id: str) -> Optional[OtpRecord]: ...
    async def save(self, record: OtpRecord) -> OtpRecord: ...
    async def find_by_status(self, purpose: OtpPurpose, subject: str, status: OtpStatus) -> list[OtpRecord]: ...
    async def latest_verified(self, purpose: OtpPurpose, subject: str) -> Optional[OtpRecord]: ...
    async def delete_created_before(self, cutoff: datetime) -> int: ...


@runtime_checkable
class FraudLogRepositoryProtocol(Protocol):
    """Protocol defining fraud log operations."""

    async def add(self, entry: FraudLogEntry) -> None: ...
    async def list_by_ip(
        self,
        ip_address: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[FraudLogEntry]: ...
    async def count_by_ip(
        self,
        ip_address: str,
        since: Optional[datetime] = None,
        context: Optional[FraudContext] = None,
        reason: Optional[FraudReason] = None,
    ) -> int: ...


# =============================================================================
# Repository Factory Functions
# =============================================================================

_account_repository: Optional[AccountRepositoryProtocol] = None
_otp_repository: Optional[OtpRepositoryProtocol] = None
_fraud_log_repository: Optional[FraudLogRepositoryProtocol] = None


def get_account_repository() -> AccountRepositoryProtocol:
    """Get the account repository."""
    global _account_repository
    if _account_repository is None:
        from repositories.account_repository import InMemoryAccountRepository

        _account_repository = InMemoryAccountRepository()
        logger.info("Using in-memory account repository")
    return _account_repository


def get_otp_repository() -> OtpRepositoryProtocol:
    """Get the one-time code repository."""
    global _otp_repository
    if _otp_repository is None:
        from repositories.otp_repository import InMemoryOtpRepository

        _otp_repository = InMemoryOtpRepository()
        logger.info("Using in-memory OTP repository")
    return _otp_repository


def get_fraud_log_repository() -> FraudLogRepositoryProtocol:
    """Get the fraud log repository."""
    global _fraud_log_repository
    if _fraud_log_repository is None:
        from repositories.fraud_log_repository import InMemoryFraudLogRepository

        _fraud_log_repository = InMemoryFraudLogRepository()
        logger.info("Using in-memory fraud log repository")
    return _fraud_log_repository


def set_repositories(
    accounts: Optional[AccountRepositoryProtocol] = None,
    otps: Optional[OtpRepositoryProtocol] = None,
    fraud_log: Optional[FraudLogRepositoryProtocol] = None,
) -> None:
    """Install externally owned repositories (called once at startup)."""
    global _account_repository, _otp_repository, _fraud_log_repository
    if accounts is not None:
        _account_repository = accounts
    if otps is not None:
        _otp_repository = otps
    if fraud_log is not None:
        _fraud_log_repository = fraud_log


def reset_repositories() -> None:
    """Forget configured repositories (tests)."""
    global _account_repository, _otp_repository, _fraud_log_repository
    _account_repository = None
    _otp_repository = None
    _fraud_log_repository = None
