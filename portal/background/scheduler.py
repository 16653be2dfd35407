from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from portal.core.config import get_settings
from portal.core.db import AsyncSessionFactory
from portal.services.impersonation import ImpersonationService
from portal.services.session_timeout import session_tracker

logger = logging.getLogger(__name__)
settings = get_settings()

maintenance_scheduler = AsyncIOScheduler()


async def sweep_expired_impersonations() -> int:
    """Close impersonation sessions past their expiry."""
    async with AsyncSessionFactory() as session:
        try:
            expired = await ImpersonationService(session).cleanup_expired_sessions()
        except Exception as exc:
            logger.exception("Impersonation sweep failed", extra={"error": str(exc)})
            return 0

    if expired:
        logger.info("impersonation_sweep", extra={"expired_sessions": expired})
    return expired


def purge_idle_admin_sessions() -> int:
    purged = session_tracker.purge_inactive()
    if purged:
        logger.info("admin_session_purge", extra={"purged_sessions": purged})
    return purged


def start_scheduler() -> None:
    if maintenance_scheduler.running:
        return
    maintenance_scheduler.add_job(
        sweep_expired_impersonations,
        "interval",
        minutes=settings.impersonation_sweep_interval_minutes,
        id="impersonation-sweep",
        max_instances=1,
        coalesce=True,
    )
    maintenance_scheduler.add_job(
        purge_idle_admin_sessions,
        "interval",
        minutes=settings.session_timeout_minutes,
        id="admin-session-purge",
        max_instances=1,
        coalesce=True,
    )
    maintenance_scheduler.start()
    logger.info(
        "Maintenance scheduler started",
        extra={"sweep_interval_minutes": settings.impersonation_sweep_interval_minutes},
    )


def shutdown_scheduler() -> None:
    if maintenance_scheduler.running:
        maintenance_scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler stopped")
