"""
Account snapshot schema.

Accounts are owned by an external store. The security core only ever sees
immutable snapshots and hands back updated copies (see
``services.account_policy``).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AccountStatus(str, Enum):
    """Account lifecycle status."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING_VERIFICATION = "pending_verification"


class Account(BaseModel):
    """Snapshot of an account as stored by the account repository."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password_hash: str
    status: AccountStatus = AccountStatus.PENDING_VERIFICATION
    failed_login_attempts: int = Field(0, ge=0)
    locked_until: Optional[datetime] = None
    mfa_enabled: bool = False
    mfa_secret: Optional[str] = None
    refresh_token_hash: Optional[str] = None
    last_login_at: Optional[datetime] = None
    last_login_ip: Optional[str] = None
    created_at: datetime
