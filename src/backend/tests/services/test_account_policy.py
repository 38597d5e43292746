"""
Tests for account lockout and freeze transitions.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")

from schemas.account import Account, AccountStatus
from services import account_policy

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make(**overrides) -> Account:
    data = {
        "id": "acct-1",
        "email": "alice@example.com",
        "password_hash": "x",
        "status": AccountStatus.ACTIVE,
        "created_at": NOW,
    }
    data.update(overrides)
    return Account(**data)


class TestLockout:
    @pytest.mark.unit
    def test_fifth_failure_locks(self):
        account = make()
        for _ in range(4):
            account = account_policy.register_failed_login(account, NOW)
        assert not account_policy.is_account_locked(account, NOW)

        account = account_policy.register_failed_login(account, NOW)

        assert account.failed_login_attempts == 5
        assert account.locked_until == NOW + timedelta(minutes=15)
        assert account_policy.is_account_locked(account, NOW)
        assert not account_policy.can_attempt_login(account, NOW)
        # Lockout alone does not suspend
        assert account.status == AccountStatus.ACTIVE

    @pytest.mark.unit
    def test_lock_lapses(self):
        account = make(locked_until=NOW + timedelta(minutes=15), failed_login_attempts=5)

        later = NOW + timedelta(minutes=15)

        assert not account_policy.is_account_locked(account, later)
        assert account_policy.can_attempt_login(account, later)

    @pytest.mark.unit
    def test_transition_returns_new_snapshot(self):
        account = make()

        updated = account_policy.register_failed_login(account, NOW)

        assert account.failed_login_attempts == 0
        assert updated is not account

    @pytest.mark.unit
    def test_success_resets_counters(self):
        account = make(
            status=AccountStatus.PENDING_VERIFICATION,
            failed_login_attempts=3,
        )

        updated = account_policy.register_successful_login(account, NOW, "1.2.3.4")

        assert updated.failed_login_attempts == 0
        assert updated.status == AccountStatus.ACTIVE
        assert updated.last_login_at == NOW
        assert updated.last_login_ip == "1.2.3.4"


class TestStatusGate:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status,allowed",
        [
            (AccountStatus.ACTIVE, True),
            (AccountStatus.PENDING_VERIFICATION, True),
            (AccountStatus.SUSPENDED, False),
            (AccountStatus.INACTIVE, False),
        ],
    )
    def test_can_attempt_login_by_status(self, status, allowed):
        assert account_policy.can_attempt_login(make(status=status), NOW) is allowed


class TestFreeze:
    @pytest.mark.unit
    def test_freeze_default_duration(self):
        frozen = account_policy.freeze_account(make(), NOW)

        assert frozen.status == AccountStatus.SUSPENDED
        assert frozen.locked_until == NOW + timedelta(minutes=30)

    @pytest.mark.unit
    def test_unfreeze(self):
        frozen = account_policy.freeze_account(make(failed_login_attempts=2), NOW, minutes=5)

        unfrozen = account_policy.unfreeze_account(frozen)

        assert unfrozen.status == AccountStatus.ACTIVE
        assert unfrozen.locked_until is None
        assert unfrozen.failed_login_attempts == 0
