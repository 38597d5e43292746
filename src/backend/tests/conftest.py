"""
Pytest fixtures for AccountGuard backend tests.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from core.security import hash_password  # noqa: E402
from repositories.account_repository import InMemoryAccountRepository  # noqa: E402
from repositories.fraud_log_repository import InMemoryFraudLogRepository  # noqa: E402
from repositories.otp_repository import InMemoryOtpRepository  # noqa: E402
from schemas.account import Account, AccountStatus  # noqa: E402
from schemas.fraud import CarrierInfo, IpReputation  # noqa: E402
from services.kv_store import InMemoryKeyValueStore  # noqa: E402

TEST_PASSWORD = "Str0ng!Pass"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubMxResolver:
    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: list[str] = []

    async def resolve_mx(self, domain: str) -> bool:
        self.calls.append(domain)
        if self.error:
            raise self.error
        return self.result


class StubCarrierLookup:
    def __init__(self, info: Optional[CarrierInfo] = None, error: Optional[Exception] = None):
        self.info = info or CarrierInfo()
        self.error = error

    async def lookup_carrier(self, phone: str) -> CarrierInfo:
        if self.error:
            raise self.error
        return self.info


class StubIpReputation:
    def __init__(self, reputation: Optional[IpReputation] = None, error: Optional[Exception] = None):
        self.reputation = reputation or IpReputation(country="US", isp="Example ISP")
        self.error = error

    async def lookup_ip_reputation(self, ip: str) -> IpReputation:
        if self.error:
            raise self.error
        return self.reputation


class RecordingNotifier:
    """Captures dispatched codes instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[Any, str, str]] = []

    def send_code(self, channel: Any, destination: str, code: str) -> None:
        self.sent.append((channel, destination, code))

    async def drain(self) -> None:
        return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock)


@pytest.fixture
def account_repo() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def otp_repo() -> InMemoryOtpRepository:
    return InMemoryOtpRepository()


@pytest.fixture
def fraud_log() -> InMemoryFraudLogRepository:
    return InMemoryFraudLogRepository()


@pytest.fixture
def mx_resolver() -> StubMxResolver:
    return StubMxResolver()


@pytest.fixture
def carrier_lookup() -> StubCarrierLookup:
    return StubCarrierLookup()


@pytest.fixture
def ip_reputation() -> StubIpReputation:
    return StubIpReputation()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def attempt_tracker(store, clock):
    from services.login_attempts import LoginAttemptTracker

    return LoginAttemptTracker(store, clock)


@pytest.fixture
def scorer(mx_resolver, carrier_lookup, ip_reputation, attempt_tracker, fraud_log):
    from services.fraud_detection import FraudScorer

    return FraudScorer(mx_resolver, carrier_lookup, ip_reputation, attempt_tracker, fraud_log)


@pytest.fixture
def ip_blocker(store, clock):
    from services.ip_blocker import IpBlockRegistry

    return IpBlockRegistry(store, clock)


@pytest.fixture
def otp_ledger(otp_repo, store, clock):
    from services.otp_service import OtpLedger

    return OtpLedger(otp_repo, store, clock)


@pytest.fixture
def device_trust(store):
    from services.device_trust import DeviceTrustRegistry

    return DeviceTrustRegistry(store)


@pytest.fixture
def verifier(account_repo, fraud_log, scorer, ip_blocker, otp_ledger, attempt_tracker, device_trust, clock):
    from services.verification_service import VerificationAggregator

    return VerificationAggregator(
        account_repo, fraud_log, scorer, ip_blocker, otp_ledger, attempt_tracker, device_trust, clock
    )


@pytest.fixture
def security_service(scorer, ip_blocker, otp_ledger, attempt_tracker, verifier, notifier, fraud_log):
    from services.security_service import SecurityService

    return SecurityService(scorer, ip_blocker, otp_ledger, attempt_tracker, verifier, notifier, fraud_log)


@pytest.fixture
def auth_service(account_repo, fraud_log, scorer, ip_blocker, attempt_tracker, verifier, clock):
    from core.security import JoseTokenIssuer
    from services.auth_service import AuthOrchestrator

    return AuthOrchestrator(
        account_repo,
        fraud_log,
        scorer,
        ip_blocker,
        attempt_tracker,
        verifier,
        JoseTokenIssuer(secret_key="test-signing-key"),
        clock,
    )


@pytest.fixture(scope="session")
def password_hash() -> str:
    """bcrypt is slow; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def make_account(account_repo, clock, password_hash):
    """Create and store an account snapshot."""

    async def _make(email: str = "alice@example.com", **overrides: Any) -> Account:
        data: dict[str, Any] = {
            "id": f"acct-{email.split('@')[0]}",
            "email": email,
            "password_hash": password_hash,
            "status": AccountStatus.ACTIVE,
            "created_at": clock(),
        }
        data.update(overrides)
        return await account_repo.create(Account(**data))

    return _make


@pytest.fixture
def verify_contact(otp_ledger):
    """Mark an email or phone as verified through the ledger."""
    from schemas.otp import OtpPurpose

    async def _verify(subject: str, purpose: OtpPurpose = OtpPurpose.EMAIL_VERIFICATION) -> None:
        record = await otp_ledger.issue(purpose, subject)
        outcome = await otp_ledger.verify(record.id, record.code, purpose)
        assert outcome.ok

    return _verify


@pytest.fixture
def mock_redis() -> MagicMock:
    """Create mock Redis client."""
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.incr = AsyncMock(return_value=1)
    redis.expire = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    return redis
