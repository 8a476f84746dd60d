"""
Wiring for the matching engine.

Builds the store, embedding provider and orchestrator from settings. Used
as FastAPI dependencies and by the Celery task, and overridden in tests.
"""

from functools import lru_cache

from matchmaker.config import get_settings
from matchmaker.services.embedding_providers import EmbeddingProvider, get_embedding_provider
from matchmaker.services.job_status import JobStatusReader
from matchmaker.services.orchestrator import MatchingOrchestrator
from matchmaker.services.store import MatchStore, SqlAlchemyMatchStore


@lru_cache
def get_store() -> MatchStore:
    return SqlAlchemyMatchStore()


@lru_cache
def get_provider() -> EmbeddingProvider:
    settings = get_settings()
    return get_embedding_provider(
        provider_name=settings.embedding_provider,
        api_key=settings.openai_api_key,
        model_name=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
    )


def enqueue_matching_job(job_id: str) -> None:
    """Send a job to the Celery matching queue."""
    # Imported here to avoid circular import with the task module
    from matchmaker.tasks.matching import run_matching_job

    run_matching_job.delay(job_id)


def get_orchestrator() -> MatchingOrchestrator:
    settings = get_settings()
    return MatchingOrchestrator(
        store=get_store(),
        embedding_provider=get_provider(),
        dispatch=enqueue_matching_job,
        dimensions=settings.embedding_dimensions,
        result_write_attempts=settings.result_write_attempts,
    )


def get_job_status_reader() -> JobStatusReader:
    return JobStatusReader(get_store())
