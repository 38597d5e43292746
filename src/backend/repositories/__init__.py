"""Repository modules for account, one-time code and fraud log access."""

from repositories.account_repository import InMemoryAccountRepository
from repositories.fraud_log_repository import InMemoryFraudLogRepository
from repositories.otp_repository import InMemoryOtpRepository

__all__ = [
    "InMemoryAccountRepository",
    "InMemoryOtpRepository",
    "InMemoryFraudLogRepository",
]
