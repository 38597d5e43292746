"""Time source used by the security services. Tests inject a controllable clock."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)
