"""Security primitives: signed tokens, password hashes and TOTP codes.

Token signing uses python-jose (HS256 by default). TOTP follows RFC 6238
with HMAC-SHA1, 30 second steps and 6 digits, which is what authenticator
apps produce for a base32 secret.
"""

import base64
import hashlib
import hmac
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import quote

import bcrypt
import structlog
from jose import JWTError, jwt

from core.config import settings

logger = structlog.get_logger(__name__)

# Token issuer and audience for validation
TOKEN_ISSUER = "accountguard-api"
TOKEN_AUDIENCE = "accountguard-client"

TOTP_INTERVAL_SECONDS = 30
TOTP_DIGITS = 6


@runtime_checkable
class TokenIssuer(Protocol):
    """Signs and verifies bearer tokens."""

    def sign(self, claims: dict[str, Any], ttl: timedelta) -> str: ...
    def verify(self, token: str, expected_type: str | None = None) -> dict[str, Any] | None: ...


class JoseTokenIssuer:
    """JWT issuer backed by python-jose."""

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        issuer: str = TOKEN_ISSUER,
        audience: str = TOKEN_AUDIENCE,
    ):
        self.secret_key = secret_key or settings.SECRET_KEY
        self.algorithm = algorithm or settings.JWT_ALGORITHM
        self.issuer = issuer
        self.audience = audience

    def sign(self, claims: dict[str, Any], ttl: timedelta) -> str:
        """Create a JWT with standard claims."""
        to_encode = claims.copy()
        now = datetime.now(timezone.utc)
        to_encode.update(
            {
                "exp": now + ttl,
                "iat": now,
                "iss": self.issuer,
                "aud": self.audience,
                "jti": secrets.token_urlsafe(16),  # Unique token ID for revocation
            }
        )
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str, expected_type: str | None = None) -> dict[str, Any] | None:
        """
        Decode and validate a JWT.

        Args:
            token: The JWT to decode
            expected_type: If provided, the ``type`` claim must match

        Returns:
            The decoded claims or None if invalid
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
            )
        except JWTError:
            return None
        if expected_type and payload.get("type") != expected_type:
            return None
        return payload


def hash_token(token: str) -> str:
    """Hash a token for storage (refresh tokens are never stored in clear)."""
    return hashlib.sha256(token.encode()).hexdigest()


# =============================================================================
# Passwords
# =============================================================================


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("password_hash_invalid")
        return False


# =============================================================================
# TOTP (MFA)
# =============================================================================


def generate_totp_secret() -> str:
    """Generate a random base32 secret (160 bits)."""
    return base64.b32encode(secrets.token_bytes(20)).decode("ascii").rstrip("=")


def build_provisioning_uri(secret: str, account_name: str, issuer: str | None = None) -> str:
    """Build an otpauth:// URI for authenticator apps."""
    issuer = issuer or settings.MFA_ISSUER
    label = quote(f"{issuer}:{account_name}")
    return f"otpauth://totp/{label}?secret={secret}&issuer={quote(issuer)}&digits={TOTP_DIGITS}&period={TOTP_INTERVAL_SECONDS}"


def generate_totp(secret: str, timestamp: float, *, interval: int = TOTP_INTERVAL_SECONDS, digits: int = TOTP_DIGITS) -> str:
    """Compute the TOTP code for a given moment. Returns "" for an undecodable secret."""
    padded = secret.upper() + "=" * ((8 - len(secret) % 8) % 8)
    try:
        key = base64.b32decode(padded, casefold=True)
    except (ValueError, TypeError):
        logger.warning("totp_secret_invalid")
        return ""
    counter = int(timestamp // interval).to_bytes(8, "big")
    digest = hmac.new(key, counter, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code_int = (int.from_bytes(digest[offset : offset + 4], "big") & 0x7FFFFFFF) % (10**digits)
    return str(code_int).zfill(digits)


def verify_totp(
    secret: Optional[str],
    code: Optional[str],
    *,
    window: int | None = None,
    at: float | None = None,
    interval: int = TOTP_INTERVAL_SECONDS,
) -> bool:
    """Check a TOTP code, accepting ``window`` steps of clock skew either side."""
    if not secret or not code:
        return False
    code = code.strip()
    if not code.isdigit() or len(code) != TOTP_DIGITS:
        return False

    window = settings.MFA_TOTP_WINDOW if window is None else window
    now = time.time() if at is None else at
    for offset in range(-window, window + 1):
        generated = generate_totp(secret, now + offset * interval, interval=interval)
        if generated and hmac.compare_digest(generated, code):
            return True
    return False


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token."""
    return secrets.token_urlsafe(length)
