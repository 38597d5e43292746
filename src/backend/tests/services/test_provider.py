"""
Tests for service wiring, lifecycle handlers and scheduled maintenance jobs.
"""

import os
from unittest.mock import AsyncMock, patch

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")

from core.config import settings
from core.events import create_start_app_handler, create_stop_app_handler
from repositories.provider import (
    AccountRepositoryProtocol,
    FraudLogRepositoryProtocol,
    OtpRepositoryProtocol,
    get_account_repository,
    get_fraud_log_repository,
    get_otp_repository,
    reset_repositories,
    set_repositories,
)
from schemas.otp import OtpPurpose
from services import background_scheduler, provider
from services.kv_store import InMemoryKeyValueStore, RedisKeyValueStore
from services.reputation import NullCarrierLookup, NullIpReputationProvider, NullMxResolver


@pytest.fixture(autouse=True)
def clean_components():
    provider.set_components(None)
    reset_repositories()
    yield
    provider.set_components(None)
    reset_repositories()


class TestBuildComponents:
    @pytest.mark.unit
    def test_in_memory_store_without_redis(self):
        with patch.object(settings, "REDIS_URL", None):
            assert isinstance(provider.create_store(), InMemoryKeyValueStore)

    @pytest.mark.unit
    def test_redis_store_with_url(self):
        with patch.object(settings, "REDIS_URL", "redis://localhost:6379/0"):
            assert isinstance(provider.create_store(), RedisKeyValueStore)

    @pytest.mark.unit
    def test_null_providers_when_unconfigured(self):
        with (
            patch.object(settings, "MX_DOH_URL", None),
            patch.object(settings, "IPINFO_TOKEN", None),
            patch.object(settings, "TWILIO_ACCOUNT_SID", None),
        ):
            components = provider.build_components(store=InMemoryKeyValueStore())

        assert isinstance(components.scorer.mx_resolver, NullMxResolver)
        assert isinstance(components.scorer.carrier_lookup, NullCarrierLookup)
        assert isinstance(components.scorer.ip_reputation, NullIpReputationProvider)

    @pytest.mark.unit
    def test_shared_graph(self, mx_resolver, carrier_lookup, ip_reputation):
        components = provider.build_components(
            store=InMemoryKeyValueStore(),
            mx_resolver=mx_resolver,
            carrier_lookup=carrier_lookup,
            ip_reputation=ip_reputation,
        )
        provider.set_components(components)

        assert provider.get_security_service() is components.security
        assert provider.get_auth_service() is components.auth
        assert provider.get_ip_blocker() is components.security.ip_blocker
        assert components.verifier.otp_ledger is components.otp_ledger

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_end_to_end_email_verification(self, mx_resolver, carrier_lookup, ip_reputation, notifier):
        components = provider.build_components(
            store=InMemoryKeyValueStore(),
            mx_resolver=mx_resolver,
            carrier_lookup=carrier_lookup,
            ip_reputation=ip_reputation,
            notifier=notifier,
        )
        security = components.security

        issued = await security.generate_otp(OtpPurpose.EMAIL_VERIFICATION, "alice@example.com", "8.8.8.8")
        verified = await security.verify_otp(issued.value.id, notifier.sent[0][2], OtpPurpose.EMAIL_VERIFICATION)

        assert verified.ok


class TestLifecycle:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        with patch.object(settings, "SCHEDULER_ENABLED", False), patch.object(settings, "REDIS_URL", None):
            await create_start_app_handler()()
            components = provider.get_components()
            await components.store.set("a", "1")

            await create_stop_app_handler()()

        assert await components.store.get("a") is None
        assert provider._components is None


class TestMaintenanceJobs:
    @pytest.mark.asyncio
    async def test_ip_block_sweep_job(self):
        blocker = AsyncMock()
        blocker.sweep_expired.return_value = 3

        with patch("services.provider.get_ip_blocker", return_value=blocker):
            await background_scheduler.ip_block_sweep_job()

        blocker.sweep_expired.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_otp_cleanup_job_contains_errors(self):
        ledger = AsyncMock()
        ledger.cleanup.side_effect = RuntimeError("db down")

        with patch("services.provider.get_otp_ledger", return_value=ledger):
            await background_scheduler.otp_cleanup_job()

        ledger.cleanup.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_scheduler_registers_jobs(self):
        try:
            await background_scheduler.start_scheduler()
            scheduler = background_scheduler.get_scheduler()
            assert {job.id for job in scheduler.get_jobs()} == {"ip_block_sweep", "otp_cleanup"}
        finally:
            await background_scheduler.stop_scheduler()


class TestRepositoryProvider:
    @pytest.mark.unit
    def test_in_memory_defaults_satisfy_protocols(self):
        assert isinstance(get_account_repository(), AccountRepositoryProtocol)
        assert isinstance(get_otp_repository(), OtpRepositoryProtocol)
        assert isinstance(get_fraud_log_repository(), FraudLogRepositoryProtocol)

    @pytest.mark.unit
    def test_set_repositories_installs_external_store(self, account_repo):
        set_repositories(accounts=account_repo)

        assert get_account_repository() is account_repo
        assert provider.build_components(store=InMemoryKeyValueStore()).verifier.accounts is account_repo

    @pytest.mark.asyncio
    async def test_account_repository_rejects_duplicates(self, account_repo, make_account):
        account = await make_account("alice@example.com")

        with pytest.raises(ValueError):
            await account_repo.create(account.model_copy(update={"id": "acct-other", "email": "ALICE@example.com"}))
        assert (await account_repo.find_by_identity("Alice@Example.com")).id == account.id
