"""
Fraud Detection Service for AccountGuard.

Scores a single signal (email, phone number or IP address) with a set of
independently weighted heuristics:
1. Static checks - disposable domains, spam patterns, phone format, blacklisted ranges
2. Reputation providers - MX records, carrier line type, VPN/proxy/Tor flags
3. History - recent login failures and fraud-flagged registrations from the IP

Each heuristic adds its weight to the score, which is clamped to 0-100. A
score of 50 or more is fraud. Scoring never writes anything: logging fraud
events and blocking IPs is up to the caller.
"""

import ipaddress
import re
import uuid
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from core.clock import Clock, utc_now
from core.config import settings
from core.errors import TransientProviderError
from repositories.provider import FraudLogRepositoryProtocol
from schemas.fraud import (
    CarrierInfo,
    FraudCheckResult,
    FraudContext,
    FraudLogEntry,
    FraudReason,
    IpReputation,
    SignalType,
)
from services.login_attempts import LoginAttemptTracker, attempt_key, ip_key
from services.reputation import CarrierLookup, IpReputationProvider, MxResolver, call_provider

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Configuration
# =============================================================================


class FraudConfig:
    """Heuristic weights and static lists."""

    # Email
    DISPOSABLE_EMAIL_WEIGHT = 40
    INVALID_MX_WEIGHT = 50
    SPAM_PATTERN_WEIGHT = 30

    # Phone
    FAKE_PHONE_WEIGHT = 40
    INVALID_CARRIER_WEIGHT = 50
    VOIP_WEIGHT = 60
    VIRTUAL_SIM_WEIGHT = 70
    RECYCLED_NUMBER_WEIGHT = 35
    PHONE_MIN_DIGITS = 10
    PHONE_MAX_DIGITS = 15

    # IP
    BLACKLISTED_IP_WEIGHT = 100
    VPN_WEIGHT = 40
    PROXY_WEIGHT = 40
    TOR_WEIGHT = 80
    HIGH_RISK_COUNTRY_WEIGHT = 50
    BRUTEFORCE_WEIGHT = 60
    MULTIPLE_ACCOUNTS_WEIGHT = 50

    # Confidence lost per provider that could not be reached
    PROVIDER_FAILURE_PENALTY = 0.5

    DISPOSABLE_EMAIL_DOMAINS = frozenset(
        {
            "tempmail.com",
            "guerrillamail.com",
            "10minutemail.com",
            "mailinator.com",
            "throwaway.email",
            "temp-mail.org",
            "yopmail.com",
            "maildrop.cc",
            "trashmail.com",
            "fakeinbox.com",
            "temp-mail.io",
            "sharklasers.com",
            "spam4.me",
            "mailnesia.com",
            "tempmail.net",
        }
    )

    SPAM_PATTERNS = (
        re.compile(r"^[0-9]+@"),
        re.compile(r"test", re.IGNORECASE),
        re.compile(r"fake", re.IGNORECASE),
        re.compile(r"spam", re.IGNORECASE),
        re.compile(r"noreply", re.IGNORECASE),
        re.compile(r"admin@admin", re.IGNORECASE),
        re.compile(r"[0-9]{10,}@"),
    )


def email_domain(email: str) -> str:
    """Lower-cased domain part of an email, or "" when there is none."""
    if "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def is_disposable_email(email: str) -> bool:
    return email_domain(email) in FraudConfig.DISPOSABLE_EMAIL_DOMAINS


def has_spam_pattern(email: str) -> bool:
    return any(pattern.search(email) for pattern in FraudConfig.SPAM_PATTERNS)


def phone_digits(phone: str) -> str:
    return re.sub(r"\D", "", phone)


def is_valid_phone_format(phone: str) -> bool:
    return FraudConfig.PHONE_MIN_DIGITS <= len(phone_digits(phone)) <= FraudConfig.PHONE_MAX_DIGITS


def _load_networks(ranges: list[str]) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    networks = []
    for cidr in ranges:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning("blacklist_range_invalid", cidr=cidr)
    return networks


# =============================================================================
# Fraud Scorer
# =============================================================================


class FraudScorer:
    """
    Evaluates email, phone and IP signals into a FraudCheckResult.

    Reputation lookups go through ``call_provider`` (bounded timeout, one
    retry). A provider that still fails marks the result ``degraded`` and its
    heuristic adds nothing, except the MX lookup: with
    FRAUD_MX_FAILURE_IS_INVALID a failed lookup counts as a missing MX record.
    """

    def __init__(
        self,
        mx_resolver: MxResolver,
        carrier_lookup: CarrierLookup,
        ip_reputation: IpReputationProvider,
        attempt_tracker: Optional[LoginAttemptTracker] = None,
        fraud_log: Optional[FraudLogRepositoryProtocol] = None,
    ):
        self.mx_resolver = mx_resolver
        self.carrier_lookup = carrier_lookup
        self.ip_reputation = ip_reputation
        self.attempt_tracker = attempt_tracker
        self.fraud_log = fraud_log

        self.high_risk_countries = settings.high_risk_countries
        self._blacklisted_networks = _load_networks(settings.blacklisted_ip_ranges)

    async def _lookup(self, name: str, func: Callable[..., Awaitable[T]], *args: Any) -> Optional[T]:
        """Run a provider call; None means it failed after retries."""
        try:
            return await call_provider(name, func, *args)
        except TransientProviderError as e:
            logger.warning("provider_unavailable", provider=e.provider, error=e.message)
            return None

    # -------------------------------------------------------------------------
    # Email
    # -------------------------------------------------------------------------

    async def score_email(self, email: str) -> FraudCheckResult:
        """Score an email address: disposable domain, MX record and spam patterns."""
        email = email.strip()
        score = 0
        reasons: list[FraudReason] = []
        details: dict[str, Any] = {}
        confidence = 1.0
        degraded = False

        if is_disposable_email(email):
            score += FraudConfig.DISPOSABLE_EMAIL_WEIGHT
            reasons.append(FraudReason.DISPOSABLE_EMAIL)
            details["disposable_email"] = True

        domain = email_domain(email)
        has_mx: Optional[bool] = False
        if domain:
            has_mx = await self._lookup("mx", self.mx_resolver.resolve_mx, domain)
        if has_mx is None:
            details["mx_lookup_failed"] = True
            confidence -= FraudConfig.PROVIDER_FAILURE_PENALTY
            if not settings.FRAUD_MX_FAILURE_IS_INVALID:
                degraded = True
        if has_mx is False or (has_mx is None and settings.FRAUD_MX_FAILURE_IS_INVALID):
            score += FraudConfig.INVALID_MX_WEIGHT
            reasons.append(FraudReason.INVALID_MX_RECORD)
            details["valid_mx_record"] = False
        elif has_mx:
            details["valid_mx_record"] = True

        if has_spam_pattern(email):
            score += FraudConfig.SPAM_PATTERN_WEIGHT
            reasons.append(FraudReason.FAKE_EMAIL)
            details["spam_patterns"] = True

        result = FraudCheckResult.build(
            SignalType.EMAIL, email, score, reasons, details, degraded=degraded, confidence=max(confidence, 0.0)
        )
        logger.debug("email_scored", domain=domain, score=result.score, reasons=[r.value for r in reasons])
        return result

    # -------------------------------------------------------------------------
    # Phone
    # -------------------------------------------------------------------------

    async def score_phone(self, phone: str) -> FraudCheckResult:
        """Score a phone number: format and carrier line type."""
        phone = phone.strip()
        score = 0
        reasons: list[FraudReason] = []
        details: dict[str, Any] = {}
        confidence = 1.0
        degraded = False

        if not is_valid_phone_format(phone):
            score += FraudConfig.FAKE_PHONE_WEIGHT
            reasons.append(FraudReason.FAKE_PHONE)
            details["valid_format"] = False
        else:
            details["valid_format"] = True

        carrier: Optional[CarrierInfo] = await self._lookup("carrier", self.carrier_lookup.lookup_carrier, phone)
        if carrier is None:
            degraded = True
            confidence -= FraudConfig.PROVIDER_FAILURE_PENALTY
            details["carrier_lookup_failed"] = True
        elif not carrier.valid:
            # An invalid number is not classified any further
            score += FraudConfig.INVALID_CARRIER_WEIGHT
            reasons.append(FraudReason.INVALID_CARRIER)
            details["carrier_valid"] = False
        else:
            details["carrier_valid"] = True
            if carrier.carrier_name:
                details["carrier"] = carrier.carrier_name
            if carrier.is_voip:
                score += FraudConfig.VOIP_WEIGHT
                reasons.append(FraudReason.VOIP_NUMBER)
                details["is_voip"] = True
            if carrier.is_virtual:
                score += FraudConfig.VIRTUAL_SIM_WEIGHT
                reasons.append(FraudReason.VIRTUAL_SIM)
                details["is_virtual"] = True
            if carrier.is_recycled:
                score += FraudConfig.RECYCLED_NUMBER_WEIGHT
                reasons.append(FraudReason.RECYCLED_NUMBER)
                details["recycled_number"] = True

        result = FraudCheckResult.build(
            SignalType.PHONE, phone, score, reasons, details, degraded=degraded, confidence=max(confidence, 0.0)
        )
        logger.debug("phone_scored", phone=phone[:6], score=result.score, reasons=[r.value for r in reasons])
        return result

    # -------------------------------------------------------------------------
    # IP
    # -------------------------------------------------------------------------

    def is_blacklisted_ip(self, ip: str) -> bool:
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(address in network for network in self._blacklisted_networks)

    async def score_ip(self, ip: str, email: Optional[str] = None) -> FraudCheckResult:
        """
        Score an IP address.

        When ``email`` is given, brute force is judged on that identity's
        attempts from this IP; otherwise on every attempt from the IP.
        """
        ip = ip.strip()
        score = 0
        reasons: list[FraudReason] = []
        details: dict[str, Any] = {"ip_address": ip}
        confidence = 1.0
        degraded = False

        if self.is_blacklisted_ip(ip):
            score += FraudConfig.BLACKLISTED_IP_WEIGHT
            reasons.append(FraudReason.BLACKLISTED_IP)
            details["blacklisted"] = True

        reputation: Optional[IpReputation] = await self._lookup(
            "ip_reputation", self.ip_reputation.lookup_ip_reputation, ip
        )
        if reputation is None:
            degraded = True
            confidence -= FraudConfig.PROVIDER_FAILURE_PENALTY
            details["ip_reputation_failed"] = True
        else:
            if reputation.is_vpn:
                score += FraudConfig.VPN_WEIGHT
                reasons.append(FraudReason.VPN_IP)
                details["is_vpn"] = True
            if reputation.is_proxy:
                score += FraudConfig.PROXY_WEIGHT
                reasons.append(FraudReason.PROXY_IP)
                details["is_proxy"] = True
            if reputation.is_tor:
                score += FraudConfig.TOR_WEIGHT
                reasons.append(FraudReason.TOR_IP)
                details["is_tor"] = True
            country = (reputation.country or "").upper()
            if country and country in self.high_risk_countries:
                score += FraudConfig.HIGH_RISK_COUNTRY_WEIGHT
                reasons.append(FraudReason.HIGH_RISK_COUNTRY)
                details["high_risk_country"] = country
            details["country"] = reputation.country
            details["isp"] = reputation.isp

        if self.attempt_tracker is not None:
            key = attempt_key(email, ip) if email else ip_key(ip)
            if await self.attempt_tracker.is_brute_force(key):
                score += FraudConfig.BRUTEFORCE_WEIGHT
                reasons.append(FraudReason.BRUTEFORCE_ATTEMPT)
                details["bruteforce_detected"] = True

        if self.fraud_log is not None:
            flagged = await self.fraud_log.count_by_ip(ip, context=FraudContext.REGISTRATION)
            if flagged >= settings.FRAUD_MULTI_ACCOUNT_THRESHOLD:
                score += FraudConfig.MULTIPLE_ACCOUNTS_WEIGHT
                reasons.append(FraudReason.MULTIPLE_ACCOUNTS_SAME_IP)
                details["multiple_accounts"] = flagged

        result = FraudCheckResult.build(
            SignalType.IP, ip, score, reasons, details, degraded=degraded, confidence=max(confidence, 0.0)
        )
        logger.debug("ip_scored", ip=ip[:8], score=result.score, reasons=[r.value for r in reasons])
        return result


# =============================================================================
# Fraud event logging
# =============================================================================


async def log_fraud_event(
    fraud_log: FraudLogRepositoryProtocol,
    reason: FraudReason,
    context: FraudContext,
    *,
    ip_address: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    score: int = 0,
    details: Optional[dict[str, Any]] = None,
    clock: Clock = utc_now,
) -> None:
    """
    Append an event to the external fraud log.

    The log is an audit side channel: a failing write is reported and does
    not change the security decision being made.
    """
    entry = FraudLogEntry(
        id=str(uuid.uuid4()),
        ip_address=ip_address,
        email=email,
        phone=phone,
        reason=reason,
        score=max(0, min(score, 100)),
        context=context,
        details=details or {},
        created_at=clock(),
    )
    try:
        await fraud_log.add(entry)
    except Exception as e:
        logger.error("fraud_log_write_failed", reason=reason.value, error=str(e))
        return
    logger.warning(
        "fraud_event_logged",
        reason=reason.value,
        context=context.value,
        ip=(ip_address or "")[:8],
        score=entry.score,
    )


def primary_reason(result: FraudCheckResult, default: FraudReason) -> FraudReason:
    """The first reason on a result, used as the fraud log reason."""
    return result.reasons[0] if result.reasons else default
