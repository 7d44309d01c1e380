"""
Background scheduler for ledger maintenance.
Handles:
- Nightly xp_history summarizing and purging for every ledger
"""

import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from fitquest import config
from fitquest.database import SessionLocal
from fitquest.services.progress_service import ProgressService

logger = logging.getLogger("fitquest.scheduler")

scheduler = AsyncIOScheduler()


async def run_history_maintenance(keep_days: Optional[int] = None):
    """Job: summarize and purge old xp_history entries"""
    db = SessionLocal()
    try:
        keep_days = keep_days if keep_days is not None else config.HISTORY_KEEP_DAYS
        logger.info(f"[HISTORY] Running maintenance (keep_days={keep_days})")
        removed = ProgressService(db).run_history_maintenance(keep_days)
        logger.info(f"[HISTORY] Maintenance done, {removed} entries purged")
    except Exception as e:
        db.rollback()
        logger.error(f"Scheduler Error (History): {e}", exc_info=True)
    finally:
        db.close()


def start_scheduler():
    """Start the scheduler"""
    if not config.MAINTENANCE_ENABLED:
        logger.info("History maintenance disabled, scheduler not started")
        return

    if not scheduler.running:
        scheduler.add_job(
            run_history_maintenance,
            CronTrigger(hour=config.MAINTENANCE_HOUR, minute=0),
            id="history_maintenance",
            replace_existing=True
        )

        scheduler.start()
        logger.info(">>> APScheduler STARTED <<<")
        logger.info(f"Scheduled jobs: {[job.id for job in scheduler.get_jobs()]}")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
