"""
Background Scheduler - Stale matching job sweep

A matching job that never reaches a terminal state (worker killed, broker
message lost) would block its owner forever, because starting a run
returns the active job instead of creating a new one. This module runs a
periodic APScheduler job that fails such jobs.

Two clocks decide when a job is abandoned:
    - processing: started (first picked up by a worker) longer ago than the
      Celery hard time limit plus a grace period
    - pending: queued longer ago than PENDING_JOB_TIMEOUT_MINUTES, so a
      busy queue does not fail jobs that are merely waiting

Default Schedule: every 5 minutes (STALE_JOB_SWEEP_MINUTES).
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from matchmaker.config import get_settings
from matchmaker.models.matching import utcnow
from matchmaker.services.orchestrator import JOB_TIMEOUT_MESSAGE
from matchmaker.services.store import MatchStore

logger = logging.getLogger(__name__)

settings = get_settings()
scheduler = AsyncIOScheduler()

# Extra time past the hard limit before a job counts as abandoned
STALE_GRACE_SECONDS = 60


def stale_cutoff(now: Optional[datetime] = None) -> datetime:
    """Start time before which a processing job is considered abandoned."""
    now = now or utcnow()
    # Celery hard limit is the soft limit + 30s
    max_age = settings.matching_job_time_limit_seconds + 30 + STALE_GRACE_SECONDS
    return now - timedelta(seconds=max_age)


def queued_cutoff(now: Optional[datetime] = None) -> datetime:
    """Creation time before which a job still waiting in the queue is considered lost."""
    now = now or utcnow()
    return now - timedelta(minutes=settings.pending_job_timeout_minutes)


def sweep_stale_jobs(store: Optional[MatchStore] = None, now: Optional[datetime] = None) -> int:
    """
    Fail every matching job that is still pending/processing past the cutoff.

    Returns:
        Number of jobs marked as failed
    """
    if store is None:
        from matchmaker.dependencies import get_store
        store = get_store()

    now = now or utcnow()
    count = store.fail_stale_jobs(stale_cutoff(now), queued_cutoff(now), JOB_TIMEOUT_MESSAGE)
    if count:
        logger.warning(f"Marked {count} stale matching jobs as failed")
    return count


def start_scheduler():
    """Start the background scheduler"""
    scheduler.add_job(
        sweep_stale_jobs,
        trigger=IntervalTrigger(minutes=settings.stale_job_sweep_minutes),
        id="sweep_stale_matching_jobs",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started: sweeping stale jobs every {settings.stale_job_sweep_minutes} minutes")


def stop_scheduler():
    """Stop the background scheduler"""
    scheduler.shutdown()
