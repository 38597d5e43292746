"""
Account lockout and freeze policy.

Free functions over immutable ``Account`` snapshots. Each transition returns
a new snapshot; persisting it is the caller's job.
"""

from datetime import datetime, timedelta
from typing import Optional

from core.config import settings
from schemas.account import Account, AccountStatus

LOGIN_ALLOWED_STATUSES = (AccountStatus.ACTIVE, AccountStatus.PENDING_VERIFICATION)


def is_account_locked(account: Account, now: datetime) -> bool:
    return account.locked_until is not None and account.locked_until > now


def can_attempt_login(account: Account, now: datetime) -> bool:
    """Active or pending accounts that are not locked may try to log in."""
    return account.status in LOGIN_ALLOWED_STATUSES and not is_account_locked(account, now)


def register_failed_login(account: Account, now: datetime) -> Account:
    """Count a bad password; the threshold-th strike locks the account."""
    attempts = account.failed_login_attempts + 1
    update: dict = {"failed_login_attempts": attempts}
    if attempts >= settings.ACCOUNT_LOCKOUT_THRESHOLD:
        update["locked_until"] = now + timedelta(minutes=settings.ACCOUNT_LOCKOUT_MINUTES)
    return account.model_copy(update=update)


def register_successful_login(account: Account, now: datetime, ip_address: Optional[str] = None) -> Account:
    return account.model_copy(
        update={
            "failed_login_attempts": 0,
            "locked_until": None,
            "last_login_at": now,
            "last_login_ip": ip_address,
            "status": AccountStatus.ACTIVE,
        }
    )


def freeze_account(account: Account, now: datetime, minutes: Optional[int] = None) -> Account:
    """Suspend the account and lock it for ``minutes``."""
    minutes = settings.ACCOUNT_FREEZE_MINUTES if minutes is None else minutes
    return account.model_copy(
        update={
            "status": AccountStatus.SUSPENDED,
            "locked_until": now + timedelta(minutes=minutes),
        }
    )


def unfreeze_account(account: Account) -> Account:
    return account.model_copy(
        update={
            "status": AccountStatus.ACTIVE,
            "locked_until": None,
            "failed_login_attempts": 0,
        }
    )
