"""
Scheduled tasks.

Reconciliation (third-party change detection) runs on the crontab in
RECONCILE_SCHEDULE when RECONCILE_SCHEDULE_ENABLED is set. Expired
notifications are purged daily.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from crosslister.core.config import Settings, get_settings
from crosslister.core.enums import SyncTrigger
from crosslister.database import async_session
from crosslister.integrations.setup import AdapterRegistry
from crosslister.services.notification_service import NotificationService
from crosslister.services.platform_registry import PlatformRegistry
from crosslister.services.reconciliation_service import ReconciliationService
from crosslister.services.sync_ledger import SyncLedger

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def reconcile_task(adapters: AdapterRegistry):
    """Read active listings back from every ready platform."""
    try:
        logger.info("=== SCHEDULED RECONCILIATION STARTING ===")
        settings = get_settings()
        async with async_session() as db:
            service = ReconciliationService(
                db,
                registry=PlatformRegistry(db, adapters),
                adapters=adapters,
                ledger=SyncLedger(db),
                notifications=NotificationService(db, settings=settings),
                adapter_timeout=settings.ADAPTER_TIMEOUT_SECONDS,
            )
            report = await service.reconcile(triggered_by=SyncTrigger.SCHEDULED)
            logger.info(f"Scheduled reconciliation completed: {report.summary()}")
    except Exception as e:
        logger.exception(f"Error in scheduled reconciliation task: {str(e)}")


async def purge_notifications_task():
    """Delete notifications past their expiry."""
    try:
        async with async_session() as db:
            deleted = await NotificationService(db).purge_expired()
        logger.info(f"Notification cleanup completed: {deleted} expired notifications deleted")
    except Exception as e:
        logger.exception(f"Error in notification cleanup task: {str(e)}")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler(adapters: AdapterRegistry, settings: Optional[Settings] = None) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if settings.RECONCILE_SCHEDULE_ENABLED:
        scheduler.add_job(
            reconcile_task,
            CronTrigger.from_crontab(settings.RECONCILE_SCHEDULE),
            args=[adapters],
            id="reconcile_listings",
            name="Reconcile Listings",
            replace_existing=True,
            max_instances=1,  # Only one reconciliation at a time
            misfire_grace_time=3600
        )
        logger.info(f"Reconciliation job added with schedule: {settings.RECONCILE_SCHEDULE}")
    else:
        logger.info("Scheduled reconciliation is disabled. Set RECONCILE_SCHEDULE_ENABLED=true to enable")

    # Daily at 3 AM
    scheduler.add_job(
        purge_notifications_task,
        CronTrigger(hour=3, minute=0),
        id="purge_notifications",
        name="Purge Expired Notifications",
        replace_existing=True,
        max_instances=1
    )
    return scheduler


async def start_scheduler(adapters: AdapterRegistry):
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler(adapters)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped successfully")
    scheduler = None
