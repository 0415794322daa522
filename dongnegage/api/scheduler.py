# dongnegage/api/scheduler.py
"""
Scheduled jobs
==============
- Billing: daily reconciliation of trial / subscription state
"""

import logging
from datetime import datetime, timezone

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from dongnegage.api.jobs.billing_reconciliation import reconcile_shop_billing

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        'coalesce': True,
        'max_instances': 1,
        'misfire_grace_time': 300
    }
)


def job_listener(event):
    if event.exception:
        logger.error("job_failed", extra={
            "job_id": event.job_id,
            "scheduled_time": event.scheduled_run_time.isoformat() if event.scheduled_run_time else None,
            "error": str(event.exception),
        })
    else:
        logger.info("job_completed", extra={
            "job_id": event.job_id,
            "scheduled_time": event.scheduled_run_time.isoformat() if event.scheduled_run_time else None,
            "execution_time": datetime.now(timezone.utc).isoformat()
        })


def start_scheduler():
    logger.info("⚙️  Configuring the job scheduler...")

    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    # 15:05 UTC is 00:05 KST, right after trials roll over
    scheduler.add_job(
        reconcile_shop_billing,
        'cron',
        hour='15',
        minute='5',
        id='billing_reconciliation_job',
        name='Billing state reconciliation'
    )

    scheduler.start()

    logger.info("✅ Scheduler started", extra={
        "total_jobs": len(scheduler.get_jobs()),
        "jobs": [job.id for job in scheduler.get_jobs()],
    })


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("🛑 Scheduler stopped")
