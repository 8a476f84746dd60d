from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./matchmaker.db"
    secret_key: str = "dev-secret-key-change-in-production"
    log_level: str = "INFO"

    # Celery configuration
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"

    # Embedding provider: "hash" (deterministic, offline) or "openai"
    embedding_provider: str = "hash"
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    # Every stored embedding must have exactly this length
    embedding_dimensions: int = 1536

    # Matching job execution
    matching_job_time_limit_seconds: int = 300
    stale_job_sweep_minutes: int = 5
    # How long a job may wait in the queue before a worker picks it up
    pending_job_timeout_minutes: int = 30
    result_write_attempts: int = 3

    # Number of ranked rows returned by the results endpoint
    results_limit: int = 20

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
