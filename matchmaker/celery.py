"""
Celery Application Configuration

Configures Celery for matching runs with:
- Redis as message broker and result backend
- Matching task module registered via include
- A dedicated queue for matching jobs
- Soft time limit so a run always ends in a terminal job state

Usage:
    # Start worker:
    celery -A matchmaker.celery worker -Q matching,default --loglevel=info

    # Enqueue a run (normally done by MatchingOrchestrator.start):
    from matchmaker.tasks.matching import run_matching_job
    run_matching_job.delay("job-123")
"""

from celery import Celery
from matchmaker.config import get_settings

settings = get_settings()

celery_app = Celery(
    "cofounder_matching",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["matchmaker.tasks.matching"],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Fair task distribution
    worker_concurrency=4,

    # Result settings
    result_expires=3600,
    task_track_started=True,

    # Acknowledge after completion so a lost worker re-delivers the job
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Time limits for matching runs
    task_soft_time_limit=settings.matching_job_time_limit_seconds,
    task_time_limit=settings.matching_job_time_limit_seconds + 30,

    task_routes={
        "matchmaker.tasks.matching.run_matching_job": {"queue": "matching"},
    },

    task_default_queue="default",
)
