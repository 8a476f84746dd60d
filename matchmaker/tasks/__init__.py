"""
Celery Task Modules

Background tasks for co-founder matching:
- matching.py: Execute a matching job (score, rank, persist)
"""

from matchmaker.tasks.matching import run_matching_job

__all__ = [
    "run_matching_job",
]
