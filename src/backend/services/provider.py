"""
Service provider: builds the security component graph from settings.

Usage:
    from services.provider import get_security_service

    security = get_security_service()
    outcome = await security.check_email(email)

The graph is built once and shared. Redis backs the key-value store when
REDIS_URL is set; otherwise an in-process store is used (single instance).
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from core.clock import Clock, utc_now
from core.config import settings
from core.security import JoseTokenIssuer, TokenIssuer
from repositories.provider import get_account_repository, get_fraud_log_repository, get_otp_repository
from services.auth_service import AuthOrchestrator
from services.device_trust import DeviceTrustRegistry
from services.fraud_detection import FraudScorer
from services.ip_blocker import IpBlockRegistry
from services.kv_store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from services.login_attempts import LoginAttemptTracker
from services.notification_service import NotificationService
from services.otp_service import OtpLedger
from services.reputation import CarrierLookup, IpReputationProvider, MxResolver, build_providers
from services.security_service import SecurityService
from services.verification_service import VerificationAggregator

logger = structlog.get_logger(__name__)


@dataclass
class SecurityComponents:
    """Every wired component, for callers that need more than the facade."""

    store: KeyValueStore
    scorer: FraudScorer
    ip_blocker: IpBlockRegistry
    otp_ledger: OtpLedger
    attempt_tracker: LoginAttemptTracker
    device_trust: DeviceTrustRegistry
    verifier: VerificationAggregator
    notifier: NotificationService
    auth: AuthOrchestrator
    security: SecurityService


_components: Optional[SecurityComponents] = None


def create_store(clock: Clock = utc_now) -> KeyValueStore:
    if settings.REDIS_URL:
        return RedisKeyValueStore.from_url(settings.REDIS_URL, settings.REDIS_LOCK_TIMEOUT_SECONDS)
    logger.info("kv_store_initialized", backend="in_memory")
    return InMemoryKeyValueStore(clock)


def build_components(
    store: Optional[KeyValueStore] = None,
    mx_resolver: Optional[MxResolver] = None,
    carrier_lookup: Optional[CarrierLookup] = None,
    ip_reputation: Optional[IpReputationProvider] = None,
    notifier: Optional[NotificationService] = None,
    token_issuer: Optional[TokenIssuer] = None,
    clock: Clock = utc_now,
) -> SecurityComponents:
    """Wire the security services. Any collaborator can be supplied explicitly."""
    store = store or create_store(clock)
    if mx_resolver is None or carrier_lookup is None or ip_reputation is None:
        default_mx, default_carrier, default_ip = build_providers()
        mx_resolver = mx_resolver or default_mx
        carrier_lookup = carrier_lookup or default_carrier
        ip_reputation = ip_reputation or default_ip

    accounts = get_account_repository()
    fraud_log = get_fraud_log_repository()

    attempt_tracker = LoginAttemptTracker(store, clock)
    scorer = FraudScorer(mx_resolver, carrier_lookup, ip_reputation, attempt_tracker, fraud_log)
    ip_blocker = IpBlockRegistry(store, clock)
    otp_ledger = OtpLedger(get_otp_repository(), store, clock)
    device_trust = DeviceTrustRegistry(store)
    notifier = notifier or NotificationService()

    verifier = VerificationAggregator(
        accounts, fraud_log, scorer, ip_blocker, otp_ledger, attempt_tracker, device_trust, clock
    )
    auth = AuthOrchestrator(
        accounts,
        fraud_log,
        scorer,
        ip_blocker,
        attempt_tracker,
        verifier,
        token_issuer or JoseTokenIssuer(),
        clock,
    )
    security = SecurityService(scorer, ip_blocker, otp_ledger, attempt_tracker, verifier, notifier, fraud_log)

    return SecurityComponents(
        store=store,
        scorer=scorer,
        ip_blocker=ip_blocker,
        otp_ledger=otp_ledger,
        attempt_tracker=attempt_tracker,
        device_trust=device_trust,
        verifier=verifier,
        notifier=notifier,
        auth=auth,
        security=security,
    )


def get_components() -> SecurityComponents:
    """Get the shared component graph, building it on first use."""
    global _components
    if _components is None:
        _components = build_components()
    return _components


def set_components(components: Optional[SecurityComponents]) -> None:
    """Install (or with None, forget) the shared graph."""
    global _components
    _components = components


def get_security_service() -> SecurityService:
    return get_components().security


def get_auth_service() -> AuthOrchestrator:
    return get_components().auth


def get_ip_blocker() -> IpBlockRegistry:
    return get_components().ip_blocker


def get_otp_ledger() -> OtpLedger:
    return get_components().otp_ledger
