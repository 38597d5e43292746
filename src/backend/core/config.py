"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables (or a local .env file).
"""

from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "AccountGuard"
    APP_ENV: str = "development"
    DEBUG: bool = False
    SECRET_KEY: str = ""  # Required - loaded from environment

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_required_secrets(cls, v: str, info: Any) -> str:
        """Validate that required secrets are set."""
        if not v:
            raise ValueError(f"{info.field_name} must be set in environment")
        return v

    # Shared state backend. When unset, an in-process store is used (single instance only).
    REDIS_URL: str | None = None
    REDIS_LOCK_TIMEOUT_SECONDS: float = 10.0

    # Authentication
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    MFA_ISSUER: str = "AccountGuard"
    MFA_TOTP_WINDOW: int = 2  # Accepted steps either side of the current one

    # Account lockout
    ACCOUNT_LOCKOUT_THRESHOLD: int = 5
    ACCOUNT_LOCKOUT_MINUTES: int = 15
    ACCOUNT_FREEZE_MINUTES: int = 30
    LOGIN_REQUIRE_ELIGIBILITY: bool = True

    # One-time codes
    OTP_EXPIRY_SECONDS: int = 60
    OTP_MAX_ATTEMPTS: int = 3
    OTP_RETENTION_HOURS: int = 24
    OTP_REQUEST_LIMIT: int = 5
    OTP_REQUEST_WINDOW_MINUTES: int = 5

    # IP blocking
    IP_BLOCK_DEFAULT_HOURS: float = 24.0
    IP_AUTO_BLOCK_SCORE: int = 80

    # Login attempt windows
    BRUTEFORCE_MAX_FAILURES: int = 5
    BRUTEFORCE_WINDOW_MINUTES: int = 15
    BURST_ATTEMPT_COUNT: int = 5
    BURST_WINDOW_SECONDS: int = 30
    LOGIN_ATTEMPT_RETENTION_HOURS: int = 24

    # Device trust
    FINGERPRINT_SALT: str | None = None
    DEVICE_TRUST_TTL_DAYS: int | None = None  # None = remembered indefinitely

    # Fraud scoring
    FRAUD_MX_FAILURE_IS_INVALID: bool = True
    FRAUD_MULTI_ACCOUNT_THRESHOLD: int = 3
    # Comma-separated, stored as strings to avoid pydantic-settings JSON parsing issues
    FRAUD_HIGH_RISK_COUNTRIES: str = "KP,IR,SY,CU"
    FRAUD_BLACKLISTED_IP_RANGES: str = "192.0.2.0/24,198.51.100.0/24,203.0.113.0/24"
    REGISTRATION_SCREEN_CONTACTS: bool = False

    # Reputation providers
    PROVIDER_TIMEOUT_SECONDS: float = 3.0
    PROVIDER_RETRIES: int = 1
    MX_DOH_URL: str | None = "https://dns.google/resolve"
    IPINFO_TOKEN: str | None = None
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None

    # Maintenance jobs
    SCHEDULER_ENABLED: bool = True
    IP_BLOCK_SWEEP_INTERVAL_MINUTES: int = 5
    OTP_CLEANUP_INTERVAL_MINUTES: int = 60

    @property
    def high_risk_countries(self) -> set[str]:
        """Get high-risk country codes as an upper-cased set."""
        return {code.strip().upper() for code in self.FRAUD_HIGH_RISK_COUNTRIES.split(",") if code.strip()}

    @property
    def blacklisted_ip_ranges(self) -> list[str]:
        """Get blacklisted CIDR ranges as a list."""
        return [cidr.strip() for cidr in self.FRAUD_BLACKLISTED_IP_RANGES.split(",") if cidr.strip()]

    @property
    def fingerprint_salt(self) -> str:
        """Salt used for hashing device fingerprints, defaults to SECRET_KEY."""
        return self.FINGERPRINT_SALT or self.SECRET_KEY


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
