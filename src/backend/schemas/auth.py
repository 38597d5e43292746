"""
Authentication-related Pydantic schemas.
"""

import re
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# At least one lower, upper, digit and special character; only these characters allowed
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{7,20}$")


class RegisterRequest(BaseModel):
    """Schema for account registration."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_complexity(cls, v: str) -> str:
        if not PASSWORD_PATTERN.match(v):
            raise ValueError(
                "Password must contain at least one lowercase letter, one uppercase letter, "
                "one number and one special character"
            )
        return v

    @field_validator("phone")
    @classmethod
    def phone_format(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone number format")
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    """Schema for password login (plus a TOTP code when MFA is enabled)."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    mfa_code: Optional[str] = Field(None, pattern=r"^\d{6}$")


class TokenPair(BaseModel):
    """JWT token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # access token lifetime in seconds


class RegistrationResult(BaseModel):
    """Result of a successful registration."""

    account_id: str
    email: str
    message: str = "Registration successful. Please verify your email."


class MfaSetup(BaseModel):
    """Secret and otpauth URI for enrolling an authenticator app."""

    secret: str
    provisioning_uri: str
