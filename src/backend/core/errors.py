"""
Failure taxonomy for the security core.

Rejections are returned to callers as typed values (``Outcome.fail``) rather
than raised. The HTTP layer maps ``FailureKind`` to a status code through
``SecurityFailure.http_status``. Only ``TransientProviderError`` is raised,
and it is always recovered inside the fraud scorer.
"""

from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class FailureKind(str, Enum):
    """Category of a caller-visible failure."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    EXPIRED_OR_EXHAUSTED = "expired_or_exhausted"
    TRANSIENT_PROVIDER = "transient_provider"


_HTTP_STATUS = {
    FailureKind.VALIDATION: 400,
    FailureKind.NOT_FOUND: 404,
    FailureKind.UNAUTHORIZED: 401,
    FailureKind.FORBIDDEN: 403,
    FailureKind.CONFLICT: 409,
    FailureKind.RATE_LIMITED: 429,
    FailureKind.EXPIRED_OR_EXHAUSTED: 410,
    FailureKind.TRANSIENT_PROVIDER: 503,
}


class SecurityFailure(BaseModel):
    """
    A typed rejection.

    ``message`` is safe to show to end users. ``code`` and ``detail`` are for
    internal/admin callers and must never be rendered to the client verbatim.
    """

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind in (FailureKind.RATE_LIMITED, FailureKind.TRANSIENT_PROVIDER)

    def public_view(self) -> dict[str, str]:
        """Client-facing representation without internal detail."""
        return {"error": self.kind.value, "message": self.message}


class Outcome(BaseModel, Generic[T]):
    """Either a value or a failure, never both."""

    model_config = ConfigDict(frozen=True)

    value: Optional[T] = None
    failure: Optional[SecurityFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(value=value)

    @classmethod
    def fail(cls, failure: SecurityFailure) -> "Outcome":
        return cls(failure=failure)


def validation_error(code: str, message: str, **detail: Any) -> SecurityFailure:
    return SecurityFailure(kind=FailureKind.VALIDATION, code=code, message=message, detail=detail)


def not_found(code: str, message: str, **detail: Any) -> SecurityFailure:
    return SecurityFailure(kind=FailureKind.NOT_FOUND, code=code, message=message, detail=detail)


def unauthorized(code: str, message: str = "Invalid credentials", **detail: Any) -> SecurityFailure:
    return SecurityFailure(kind=FailureKind.UNAUTHORIZED, code=code, message=message, detail=detail)


def forbidden(code: str, message: str, **detail: Any) -> SecurityFailure:
    return SecurityFailure(kind=FailureKind.FORBIDDEN, code=code, message=message, detail=detail)


def conflict(code: str, message: str, **detail: Any) -> SecurityFailure:
    return SecurityFailure(kind=FailureKind.CONFLICT, code=code, message=message, detail=detail)


def rate_limited(code: str, message: str = "Too many attempts. Please try again later.", **detail: Any) -> SecurityFailure:
    return SecurityFailure(kind=FailureKind.RATE_LIMITED, code=code, message=message, detail=detail)


def expired_or_exhausted(code: str, message: str, **detail: Any) -> SecurityFailure:
    return SecurityFailure(kind=FailureKind.EXPIRED_OR_EXHAUSTED, code=code, message=message, detail=detail)


class TransientProviderError(Exception):
    """An external reputation or DNS lookup failed or timed out."""

    def __init__(self, provider: str, message: str = "provider unavailable"):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
