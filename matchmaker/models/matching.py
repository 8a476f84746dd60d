"""
Matching Models - Job state and ranked results

Status Flow:
    pending → processing → completed | failed

Step markers while processing:
    embedding → calculating → ranking

The matches table holds one row per (requester, candidate) pair and is
fully replaced for a requester whenever a run completes.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from matchmaker.database import Base


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobStep(str, enum.Enum):
    EMBEDDING = "embedding"
    CALCULATING = "calculating"
    RANKING = "ranking"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime; every timestamp column stores UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MatchingJob(Base):
    """
    One asynchronous scoring run for a requesting user.

    Attributes:
        id: UUID primary key
        user_id: Requesting profile id (indexed)
        status: JobStatus value (indexed)
        progress: 0-100
        current_step: JobStep value
        error_message: Failure detail, only set on failed jobs
        created_at: Creation time (naive UTC)
        started_at: Set when a worker first moves the job to processing
        completed_at: Set when the job reaches a terminal status
    """

    __tablename__ = "matching_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    progress = Column(Integer, nullable=False, default=0)
    current_step = Column(String(20), nullable=False, default=JobStep.EMBEDDING.value)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class Match(Base):
    """
    One ranked match row.

    Attributes:
        user1_id: Requesting profile id
        user2_id: Candidate profile id
        match_percentage: Blended score 0-100
        rank: 1-based position among the requester's results
    """

    __tablename__ = "matches"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user1_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    user2_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    match_percentage = Column(Integer, nullable=False)
    rank = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
