"""
External reputation providers used by the fraud scorer.

Three narrow lookups, each behind a protocol so deployments can plug in
their own vendor:

- ``resolve_mx(domain)``: does the email domain accept mail?
- ``lookup_carrier(phone)``: carrier line type for a phone number
- ``lookup_ip_reputation(ip)``: VPN / proxy / Tor flags and country

The httpx implementations talk to DNS-over-HTTPS, Twilio Lookup v2 and
ipinfo.io. Null implementations are the default when nothing is configured.
Every client raises ``TransientProviderError`` on timeouts, transport errors
and unexpected status codes; ``call_provider`` bounds and retries the call.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar, runtime_checkable

import httpx
import structlog

from core.config import settings
from core.errors import TransientProviderError
from schemas.fraud import CarrierInfo, IpReputation

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MX_RECORD_TYPE = 15
DOH_STATUS_NOERROR = 0
DOH_STATUS_NXDOMAIN = 3

TWILIO_LOOKUP_URL = "https://lookups.twilio.com/v2/PhoneNumbers/{phone}"
IPINFO_URL = "https://ipinfo.io/{ip}/json"

VOIP_LINE_TYPES = {"fixedVoip", "nonFixedVoip"}
VIRTUAL_LINE_TYPES = {"nonFixedVoip"}


@runtime_checkable
class MxResolver(Protocol):
    async def resolve_mx(self, domain: str) -> bool: ...


@runtime_checkable
class CarrierLookup(Protocol):
    async def lookup_carrier(self, phone: str) -> CarrierInfo: ...


@runtime_checkable
class IpReputationProvider(Protocol):
    async def lookup_ip_reputation(self, ip: str) -> IpReputation: ...


async def call_provider(
    name: str,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    timeout: Optional[float] = None,
    retries: Optional[int] = None,
) -> T:
    """
    Call a provider with a bounded timeout, retrying transient failures.

    Args:
        name: Provider name for logs and the raised error
        func: Coroutine function to call
        timeout: Seconds per attempt (defaults to PROVIDER_TIMEOUT_SECONDS)
        retries: Extra attempts after the first (defaults to PROVIDER_RETRIES)

    Raises:
        TransientProviderError: when every attempt failed
    """
    timeout = settings.PROVIDER_TIMEOUT_SECONDS if timeout is None else timeout
    retries = settings.PROVIDER_RETRIES if retries is None else retries

    last_error: Optional[str] = None
    for attempt in range(retries + 1):
        try:
            return await asyncio.wait_for(func(*args), timeout=timeout)
        except asyncio.TimeoutError:
            last_error = "timeout"
        except TransientProviderError as e:
            last_error = e.message
        except Exception as e:
            last_error = str(e) or type(e).__name__
        logger.warning("provider_call_failed", provider=name, attempt=attempt + 1, error=last_error)

    raise TransientProviderError(name, last_error or "unavailable")


# =============================================================================
# HTTP providers
# =============================================================================


class _HttpProvider:
    """Shared client handling for the httpx-backed providers."""

    name = "http"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self._client = client
        self._timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.get(url, timeout=self._timeout, **kwargs)
            async with httpx.AsyncClient() as client:
                return await client.get(url, timeout=self._timeout, **kwargs)
        except httpx.HTTPError as e:
            raise TransientProviderError(self.name, str(e) or type(e).__name__) from e


class DohMxResolver(_HttpProvider):
    """MX lookup over DNS-over-HTTPS (JSON API, as served by dns.google)."""

    name = "mx"

    def __init__(self, url: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.url = url or settings.MX_DOH_URL or "https://dns.google/resolve"

    async def resolve_mx(self, domain: str) -> bool:
        response = await self._get(
            self.url,
            params={"name": domain, "type": "MX"},
            headers={"Accept": "application/dns-json"},
        )
        if response.status_code != 200:
            raise TransientProviderError(self.name, f"status {response.status_code}")

        data = response.json()
        status = data.get("Status")
        if status == DOH_STATUS_NXDOMAIN:
            return False
        if status != DOH_STATUS_NOERROR:
            raise TransientProviderError(self.name, f"dns status {status}")
        answers = data.get("Answer") or []
        return any(answer.get("type") == MX_RECORD_TYPE for answer in answers)


class TwilioCarrierLookup(_HttpProvider):
    """Carrier line-type lookup via Twilio Lookup v2."""

    name = "carrier"

    def __init__(self, account_sid: str, auth_token: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.account_sid = account_sid
        self.auth_token = auth_token

    async def lookup_carrier(self, phone: str) -> CarrierInfo:
        response = await self._get(
            TWILIO_LOOKUP_URL.format(phone=phone),
            params={"Fields": "line_type_intelligence"},
            auth=(self.account_sid, self.auth_token),
        )
        if response.status_code == 404:
            return CarrierInfo(valid=False)
        if response.status_code != 200:
            raise TransientProviderError(self.name, f"status {response.status_code}")

        data = response.json()
        if not data.get("valid", True):
            return CarrierInfo(valid=False)

        line_info = data.get("line_type_intelligence") or {}
        line_type = line_info.get("type")
        reassigned = data.get("reassigned_number") or {}
        return CarrierInfo(
            valid=True,
            is_voip=line_type in VOIP_LINE_TYPES,
            is_virtual=line_type in VIRTUAL_LINE_TYPES,
            is_recycled=bool(reassigned.get("is_number_reassigned")),
            carrier_name=line_info.get("carrier_name"),
        )


class IpInfoReputationProvider(_HttpProvider):
    """IP reputation via ipinfo.io (privacy flags need a paid token)."""

    name = "ip_reputation"

    def __init__(self, token: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.token = token

    async def lookup_ip_reputation(self, ip: str) -> IpReputation:
        params = {"token": self.token} if self.token else None
        response = await self._get(IPINFO_URL.format(ip=ip), params=params)
        if response.status_code != 200:
            raise TransientProviderError(self.name, f"status {response.status_code}")

        data = response.json()
        privacy = data.get("privacy") or {}
        return IpReputation(
            is_vpn=bool(privacy.get("vpn", False)),
            is_proxy=bool(privacy.get("proxy", False)),
            is_tor=bool(privacy.get("tor", False)),
            country=data.get("country"),
            isp=data.get("org"),
        )


# =============================================================================
# Null providers
# =============================================================================


class NullMxResolver:
    """Treats every domain as deliverable."""

    async def resolve_mx(self, domain: str) -> bool:
        return True


class NullCarrierLookup:
    """Reports every number as a valid mobile line."""

    async def lookup_carrier(self, phone: str) -> CarrierInfo:
        return CarrierInfo(valid=True)


class NullIpReputationProvider:
    """Reports every IP as clean."""

    async def lookup_ip_reputation(self, ip: str) -> IpReputation:
        return IpReputation()


def build_providers() -> tuple[MxResolver, CarrierLookup, IpReputationProvider]:
    """Pick provider implementations from settings."""
    mx: MxResolver = DohMxResolver() if settings.MX_DOH_URL else NullMxResolver()

    carrier: CarrierLookup
    if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN:
        carrier = TwilioCarrierLookup(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    else:
        carrier = NullCarrierLookup()

    ip_rep: IpReputationProvider
    if settings.IPINFO_TOKEN:
        ip_rep = IpInfoReputationProvider(settings.IPINFO_TOKEN)
    else:
        ip_rep = NullIpReputationProvider()

    logger.info(
        "reputation_providers_configured",
        mx=type(mx).__name__,
        carrier=type(carrier).__name__,
        ip_reputation=type(ip_rep).__name__,
    )
    return mx, carrier, ip_rep
