"""
Background Tasks for Matching Runs

Celery task that executes one matching job end to end. The orchestrator
writes every outcome (including timeouts) to the job row; the task adds
metrics and makes sure nothing escapes without a terminal state.

Failures are terminal: the task is never retried automatically, the client
starts a new run instead.
"""

import logging
import time

from prometheus_client import Histogram, Counter

from matchmaker.celery import celery_app

logger = logging.getLogger(__name__)

# ==================== Prometheus Metrics ====================

TASK_DURATION = Histogram(
    "celery_task_duration_seconds",
    "Time spent executing Celery tasks",
    ["task_name"]
)

TASK_FAILURES = Counter(
    "celery_task_failures_total",
    "Number of Celery task failures",
    ["task_name"]
)


def get_orchestrator():
    """Build the orchestrator from settings."""
    from matchmaker.dependencies import get_orchestrator as build_orchestrator

    return build_orchestrator()


# ==================== Celery Tasks ====================

@celery_app.task(bind=True, max_retries=0, acks_late=True)
def run_matching_job(self, job_id: str) -> dict:
    """
    Execute a matching job.

    Args:
        job_id: MatchingJob UUID created by MatchingOrchestrator.start

    Returns:
        Dict with job_id, final status, match count and error message
    """
    start_time = time.time()

    try:
        outcome = get_orchestrator().run_job(job_id)
        if outcome.status == "failed":
            TASK_FAILURES.labels(task_name="run_matching_job").inc()
        return {
            "job_id": outcome.job_id,
            "status": outcome.status,
            "matches": outcome.matches,
            "error_message": outcome.error_message,
        }

    except Exception as exc:
        # Unknown job id or a broken store: nothing left to write to
        TASK_FAILURES.labels(task_name="run_matching_job").inc()
        logger.error(f"Matching task for job {job_id} failed: {exc}")
        raise

    finally:
        duration = time.time() - start_time
        TASK_DURATION.labels(task_name="run_matching_job").observe(duration)
