"""
Verification Code Notification Service

Delivers one-time codes by email or SMS. Delivery is fire-and-forget: the
send runs as a background task and a failing transport is logged, never
surfaced to the code issuer.

Transports are pluggable. The default transport only logs, for deployments
where delivery is handled by an external mailer/SMS gateway.
"""

import asyncio
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


class NotificationChannel(str, Enum):
    """Delivery channel for a code."""

    EMAIL = "email"
    SMS = "sms"


@runtime_checkable
class CodeTransport(Protocol):
    """Sends one code to one destination."""

    async def send(self, destination: str, code: str) -> None: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    def send_code(self, channel: NotificationChannel, destination: str, code: str) -> None: ...


def mask_destination(destination: str) -> str:
    """Keep enough of an address or number to correlate logs, not to contact anyone."""
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:2]}***@{domain}"
    return f"{destination[:4]}***{destination[-2:]}"


class LoggingTransport:
    """Records the dispatch without delivering anything."""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel

    async def send(self, destination: str, code: str) -> None:
        logger.info(
            "verification_code_dispatched",
            channel=self.channel.value,
            destination=mask_destination(destination),
        )


class NotificationService:
    """
    Fire-and-forget code delivery.

    Features:
    - One transport per channel
    - Background tasks are tracked until they finish
    - ``drain()`` waits for in-flight sends (shutdown and tests)
    """

    def __init__(
        self,
        email_transport: Optional[CodeTransport] = None,
        sms_transport: Optional[CodeTransport] = None,
    ):
        self._transports: dict[NotificationChannel, CodeTransport] = {
            NotificationChannel.EMAIL: email_transport or LoggingTransport(NotificationChannel.EMAIL),
            NotificationChannel.SMS: sms_transport or LoggingTransport(NotificationChannel.SMS),
        }
        self._tasks: set[asyncio.Task] = set()

    def send_code(self, channel: NotificationChannel, destination: str, code: str) -> None:
        """Schedule delivery and return immediately."""
        task = asyncio.create_task(self._deliver(channel, destination, code))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, channel: NotificationChannel, destination: str, code: str) -> None:
        try:
            await self._transports[channel].send(destination, code)
        except Exception as e:
            logger.error(
                "verification_code_delivery_failed",
                channel=channel.value,
                destination=mask_destination(destination),
                error=str(e),
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
