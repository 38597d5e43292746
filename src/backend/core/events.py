"""
Startup and shutdown hooks for a host application.

Startup wires the security component graph and, when enabled, starts the
maintenance scheduler. Shutdown stops the scheduler, waits for in-flight
code deliveries and closes the shared key-value store.
"""

from typing import Awaitable, Callable

import structlog

from core.config import settings

logger = structlog.get_logger(__name__)

LifecycleHook = Callable[[], Awaitable[None]]


def create_start_app_handler() -> LifecycleHook:
    async def start_app() -> None:
        from services.provider import get_components

        components = get_components()
        logger.info("accountguard_starting", env=settings.APP_ENV, store=type(components.store).__name__)

        if not settings.SCHEDULER_ENABLED:
            logger.info("maintenance_scheduler_disabled")
            return
        try:
            from services.background_scheduler import start_scheduler

            await start_scheduler()
        except Exception as e:
            # Lazy expiry still applies; only the periodic sweeps are lost
            logger.exception("maintenance_scheduler_start_failed", error=str(e))

    return start_app


def create_stop_app_handler() -> LifecycleHook:
    async def stop_app() -> None:
        from services.background_scheduler import stop_scheduler
        from services.provider import get_components, set_components

        try:
            await stop_scheduler()
        except Exception as e:
            logger.warning("maintenance_scheduler_stop_failed", error=str(e))

        components = get_components()
        await components.notifier.drain()
        try:
            await components.store.close()
        except Exception as e:
            logger.warning("kv_store_close_failed", error=str(e))
        set_components(None)
        logger.info("accountguard_stopped")

    return stop_app
