"""
Maintenance scheduler.

Runs the periodic housekeeping of the security services in-process with
APScheduler:
- sweep IP blocks whose unblock time has passed
- purge one-time codes older than the retention window

Lazy expiry already hides stale records from readers; these jobs only keep
the stores from growing.
"""

import logging
from datetime import timezone
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def ip_block_sweep_job() -> None:
    """Delete IP blocks whose unblock time has passed."""
    from services.provider import get_ip_blocker

    try:
        removed = await get_ip_blocker().sweep_expired()
        logger.info(f"IP block sweep finished, {removed} expired blocks removed")
    except Exception as e:
        logger.error(f"IP block sweep failed: {e}", exc_info=True)


async def otp_cleanup_job() -> None:
    """Purge one-time codes past the retention window."""
    from services.provider import get_otp_ledger

    try:
        removed = await get_otp_ledger().cleanup()
        logger.info(f"OTP cleanup finished, {removed} records purged")
    except Exception as e:
        logger.error(f"OTP cleanup failed: {e}", exc_info=True)


def _maintenance_jobs() -> list[tuple[str, str, Callable[[], Awaitable[None]], int]]:
    """(job id, display name, coroutine, interval in minutes) for every job."""
    return [
        ("ip_block_sweep", "IP Block Sweep", ip_block_sweep_job, settings.IP_BLOCK_SWEEP_INTERVAL_MINUTES),
        ("otp_cleanup", "OTP Cleanup", otp_cleanup_job, settings.OTP_CLEANUP_INTERVAL_MINUTES),
    ]


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    return _scheduler


async def start_scheduler() -> AsyncIOScheduler:
    """Register the maintenance jobs and start the scheduler (idempotent)."""
    scheduler = get_scheduler()
    if scheduler.running:
        return scheduler

    for job_id, name, func, minutes in _maintenance_jobs():
        scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Scheduled {name} every {minutes} minutes")

    scheduler.start()
    logger.info("Maintenance scheduler running")
    return scheduler


async def stop_scheduler() -> None:
    """Shut the scheduler down and forget it, so a later start builds a fresh one."""
    global _scheduler
    scheduler, _scheduler = _scheduler, None
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler stopped")
