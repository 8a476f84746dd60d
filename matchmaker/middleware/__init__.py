"""Request metrics middleware and matching engine counters."""

from matchmaker.middleware.metrics import (
    PrometheusMiddleware,
    setup_metrics,
    record_embedding_generated,
    record_embedding_latency,
    record_job_outcome,
    record_score_calculated,
)

__all__ = [
    "PrometheusMiddleware",
    "setup_metrics",
    "record_embedding_generated",
    "record_embedding_latency",
    "record_job_outcome",
    "record_score_calculated",
]
