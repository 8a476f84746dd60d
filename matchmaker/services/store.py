"""
Match Store - Store-access interface for the matching engine

The orchestrator and the job status reader never touch a database client
directly; they receive a MatchStore. SqlAlchemyMatchStore implements it
over the ORM models with short-lived sessions, so it can be shared by the
API threadpool and Celery workers.

Every method returns plain frozen records, never ORM instances.

Guarantees:
    - replace_results deletes and inserts in one transaction
    - update_job_status never modifies a terminal job
    - replace_results given a job id refuses to write for a terminal job
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, List, Optional, Protocol, Union

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchmaker.database import get_db_session
from matchmaker.exceptions import JobAlreadyFinishedError, JobNotFoundError, ResultPersistenceError
from matchmaker.models import ACTIVE_STATUSES, JobStatus, JobStep, Match, MatchingJob, Profile
from matchmaker.models.matching import utcnow

logger = logging.getLogger(__name__)


# ==================== Records ====================

@dataclass(frozen=True)
class ProfileRecord:
    """Matching-relevant columns of a profile row (raw, unvalidated JSON)."""
    id: str
    onboarding_data: Any
    embedding: Any
    onboarding_completed: bool


@dataclass(frozen=True)
class JobRecord:
    id: str
    user_id: str
    status: str
    progress: int
    current_step: str
    error_message: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal


@dataclass(frozen=True)
class MatchResult:
    """One ranked (requester, candidate) row to persist."""
    user_id: str
    matched_user_id: str
    match_percentage: int
    rank: int


@dataclass(frozen=True)
class CandidateCard:
    """Public profile fields shown next to a match."""
    id: str
    display_name: str
    headline: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    avatar_url: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    work_styles: List[str] = field(default_factory=list)
    industries: List[str] = field(default_factory=list)
    github: Optional[str] = None
    x: Optional[str] = None
    website: Optional[str] = None


@dataclass(frozen=True)
class RankedMatch:
    id: str
    match_percentage: int
    rank: int
    profile: CandidateCard


# ==================== Interface ====================

class MatchStore(Protocol):
    """Operations the matching engine needs from the backing store."""

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        ...

    def list_eligible_candidates(self, user_id: str) -> List[ProfileRecord]:
        ...

    def upsert_embedding(self, user_id: str, embedding: List[float]) -> None:
        ...

    def replace_results(
        self, user_id: str, results: List[MatchResult], job_id: Optional[str] = None
    ) -> None:
        ...

    def create_job(self, user_id: str) -> JobRecord:
        ...

    def find_active_job(self, user_id: str) -> Optional[JobRecord]:
        ...

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        ...

    def update_job_status(
        self,
        job_id: str,
        status: Union[JobStatus, str],
        progress: int,
        current_step: Union[JobStep, str],
        error_message: Optional[str] = None,
    ) -> bool:
        ...

    def list_results(self, user_id: str, limit: int) -> List[RankedMatch]:
        ...

    def fail_stale_jobs(
        self, running_cutoff: datetime, queued_cutoff: datetime, error_message: str
    ) -> int:
        ...


# ==================== SQLAlchemy implementation ====================

def _profile_record(profile: Profile) -> ProfileRecord:
    return ProfileRecord(
        id=profile.id,
        onboarding_data=profile.project_preferences,
        embedding=profile.text_embedding,
        onboarding_completed=bool(profile.onboarding_completed),
    )


def _job_record(job: MatchingJob) -> JobRecord:
    return JobRecord(
        id=job.id,
        user_id=job.user_id,
        status=job.status,
        progress=job.progress,
        current_step=job.current_step,
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def _candidate_card(profile: Profile) -> CandidateCard:
    return CandidateCard(
        id=profile.id,
        display_name=profile.display_name or "",
        headline=profile.headline,
        role=profile.role,
        status=profile.status,
        avatar_url=profile.avatar_url,
        skills=list(profile.skills or []),
        work_styles=list(profile.work_styles or []),
        industries=list(profile.industries or []),
        github=profile.github,
        x=profile.x,
        website=profile.website,
    )


class SqlAlchemyMatchStore:
    """
    MatchStore backed by the SQLAlchemy models.

    Args:
        session_factory: Callable returning a new Session (default:
            database.get_db_session)
    """

    def __init__(self, session_factory: Callable[[], Session] = get_db_session) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ---------- profiles ----------

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        with self._session() as session:
            profile = session.get(Profile, user_id)
            return _profile_record(profile) if profile else None

    def list_eligible_candidates(self, user_id: str) -> List[ProfileRecord]:
        with self._session() as session:
            rows = session.scalars(
                select(Profile)
                .where(Profile.id != user_id, Profile.onboarding_completed.is_(True))
                .order_by(Profile.created_at, Profile.id)
            ).all()
            return [_profile_record(p) for p in rows]

    def upsert_embedding(self, user_id: str, embedding: List[float]) -> None:
        with self._session() as session:
            session.execute(
                update(Profile).where(Profile.id == user_id).values(text_embedding=list(embedding))
            )

    # ---------- results ----------

    def replace_results(
        self, user_id: str, results: List[MatchResult], job_id: Optional[str] = None
    ) -> None:
        """
        Replace the requester's result set.

        With a job_id, the job row is locked and checked in the same
        transaction, so a job failed by someone else never overwrites the
        previous results.

        Raises:
            JobAlreadyFinishedError: If the job is already terminal (nothing changed)
            ResultPersistenceError: If the transaction failed (nothing changed)
        """
        try:
            with self._session() as session:
                if job_id is not None:
                    job = session.scalars(
                        select(MatchingJob).where(MatchingJob.id == job_id).with_for_update()
                    ).first()
                    if job is None:
                        raise JobNotFoundError(job_id)
                    if JobStatus(job.status).is_terminal:
                        raise JobAlreadyFinishedError(job_id, job.status)
                session.execute(delete(Match).where(Match.user1_id == user_id))
                session.add_all(
                    Match(
                        user1_id=r.user_id,
                        user2_id=r.matched_user_id,
                        match_percentage=r.match_percentage,
                        rank=r.rank,
                    )
                    for r in results
                )
        except SQLAlchemyError as e:
            raise ResultPersistenceError(f"Failed to save matching results: {e}") from e

    def list_results(self, user_id: str, limit: int) -> List[RankedMatch]:
        with self._session() as session:
            rows = session.execute(
                select(Match, Profile)
                .join(Profile, Profile.id == Match.user2_id)
                .where(Match.user1_id == user_id)
                .order_by(Match.rank.asc())
                .limit(limit)
            ).all()
            return [
                RankedMatch(
                    id=match.id,
                    match_percentage=match.match_percentage,
                    rank=match.rank,
                    profile=_candidate_card(profile),
                )
                for match, profile in rows
            ]

    # ---------- jobs ----------

    def create_job(self, user_id: str) -> JobRecord:
        with self._session() as session:
            job = MatchingJob(
                user_id=user_id,
                status=JobStatus.PENDING.value,
                progress=0,
                current_step=JobStep.EMBEDDING.value,
            )
            session.add(job)
            session.flush()
            return _job_record(job)

    def find_active_job(self, user_id: str) -> Optional[JobRecord]:
        with self._session() as session:
            job = session.scalars(
                select(MatchingJob)
                .where(MatchingJob.user_id == user_id, MatchingJob.status.in_(ACTIVE_STATUSES))
                .order_by(MatchingJob.created_at.desc())
                .limit(1)
            ).first()
            return _job_record(job) if job else None

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        with self._session() as session:
            job = session.get(MatchingJob, job_id)
            return _job_record(job) if job else None

    def update_job_status(
        self,
        job_id: str,
        status: Union[JobStatus, str],
        progress: int,
        current_step: Union[JobStep, str],
        error_message: Optional[str] = None,
    ) -> bool:
        """
        Write job state.

        The first processing update stamps started_at, terminal statuses
        stamp completed_at. Jobs that are already terminal are left
        untouched.

        Returns:
            True if the job was updated

        Raises:
            JobNotFoundError: If the job id is unknown
        """
        status = JobStatus(status)
        current_step = JobStep(current_step)

        with self._session() as session:
            job = session.get(MatchingJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if JobStatus(job.status).is_terminal:
                logger.warning(f"Ignoring {status.value} update for terminal job {job_id} ({job.status})")
                return False

            job.status = status.value
            job.progress = progress
            job.current_step = current_step.value
            if error_message is not None:
                job.error_message = error_message
            if status is JobStatus.PROCESSING and job.started_at is None:
                job.started_at = utcnow()
            if status.is_terminal:
                job.completed_at = utcnow()
            return True

    def fail_stale_jobs(
        self, running_cutoff: datetime, queued_cutoff: datetime, error_message: str
    ) -> int:
        """
        Fail abandoned jobs. Returns the count.

        A processing job is abandoned once it started before running_cutoff;
        a pending job once it was queued before queued_cutoff.
        """
        running = and_(
            MatchingJob.status == JobStatus.PROCESSING.value,
            func.coalesce(MatchingJob.started_at, MatchingJob.created_at) < running_cutoff,
        )
        queued = and_(
            MatchingJob.status == JobStatus.PENDING.value,
            MatchingJob.created_at < queued_cutoff,
        )
        with self._session() as session:
            result = session.execute(
                update(MatchingJob)
                .where(or_(running, queued))
                .values(
                    status=JobStatus.FAILED.value,
                    progress=0,
                    error_message=error_message,
                    completed_at=utcnow(),
                )
            )
            return result.rowcount or 0
