"""
Matching Orchestrator - Asynchronous co-founder matching runs

Owns the matching job state machine:

    pending → processing → completed | failed

    Step / progress while processing:
        embedding   10  requester profile loaded
        embedding   30  requester embedding regenerated (only if needed)
        calculating 50  candidate pool loaded, candidates scored
        ranking     80  candidates sorted
        ranking    100  results persisted, job completed

Processing Pipeline (run_job):
    1. Load requester onboarding answers and cached embedding
    2. Regenerate + write back the requester embedding if invalid
    3. Load every other user with completed onboarding
    4. Regenerate missing candidate embeddings in one batch and cache them
    5. Per candidate: categorical score, embedding score, blend
    6. Stable sort by blended score, descending
    7. Replace the requester's results in one transaction
    8. Mark completed

Any error in steps 1-7 fails the job (progress 0, error message stored).
Embedding problems for one candidate only zero that candidate's
embedding score.

If the job is moved to a terminal state by someone else while it runs
(the stale job sweep), the run stops at its next status write and never
replaces the results.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from celery.exceptions import SoftTimeLimitExceeded

from matchmaker.exceptions import (
    JobAlreadyFinishedError,
    JobNotFoundError,
    MatchingDispatchError,
    OnboardingDataMissingError,
    ProfileNotFoundError,
    ResultPersistenceError,
)
from matchmaker.middleware.metrics import (
    record_embedding_generated,
    record_job_outcome,
    record_score_calculated,
)
from matchmaker.models import JobStatus, JobStep
from matchmaker.services.embedding_providers import DEFAULT_DIMENSIONS, EmbeddingProvider
from matchmaker.services.embeddings import (
    generate_user_embedding,
    generate_user_embeddings,
    is_valid_embedding,
)
from matchmaker.services.similarity import (
    blend_scores,
    calculate_categorical_similarity,
    calculate_embedding_similarity,
)
from matchmaker.services.store import MatchResult, MatchStore, ProfileRecord
from matchmaker.services.vectorizer import FeatureVector, create_feature_vector

logger = logging.getLogger(__name__)

JOB_TIMEOUT_MESSAGE = "Matching job timed out"


@dataclass(frozen=True)
class StartResult:
    job_id: str
    created: bool


@dataclass(frozen=True)
class CandidateScore:
    user_id: str
    score: int
    categorical_score: int
    embedding_score: float


@dataclass(frozen=True)
class JobOutcome:
    """Summary of one run_job call."""
    job_id: str
    status: str
    matches: int = 0
    error_message: Optional[str] = None


def describe_error(exc: BaseException) -> str:
    """Error message stored on a failed job."""
    message = str(exc)
    return message if message else type(exc).__name__


class MatchingOrchestrator:
    """
    Runs matching jobs against an injected store and embedding provider.

    Args:
        store: MatchStore implementation
        embedding_provider: Backend used to (re)generate embeddings
        dispatch: Hands a new job id to the worker queue
        dimensions: Required embedding length
        result_write_attempts: How often the result replacement is tried
            as a whole before the job fails

    Example:
        >>> orchestrator = MatchingOrchestrator(store, provider, dispatch=run_matching_job.delay)
        >>> orchestrator.start("user-1")
        StartResult(job_id='...', created=True)
    """

    def __init__(
        self,
        store: MatchStore,
        embedding_provider: EmbeddingProvider,
        dispatch: Callable[[str], Any],
        dimensions: int = DEFAULT_DIMENSIONS,
        result_write_attempts: int = 3,
    ) -> None:
        self.store = store
        self.embedding_provider = embedding_provider
        self.dispatch = dispatch
        self.dimensions = dimensions
        self.result_write_attempts = max(1, result_write_attempts)

    # ==================== Start ====================

    def start(self, user_id: str) -> StartResult:
        """
        Start a match run, or return the user's run that is still active.

        Raises:
            MatchingDispatchError: If the job could not be enqueued (the job
                is marked failed before raising)
        """
        existing = self.store.find_active_job(user_id)
        if existing:
            logger.info(f"Matching already in progress for {user_id}: job {existing.id}")
            record_job_outcome("reused")
            return StartResult(job_id=existing.id, created=False)

        job = self.store.create_job(user_id)
        record_job_outcome("started")

        try:
            self.dispatch(job.id)
        except Exception as exc:
            logger.error(f"Failed to enqueue matching job {job.id}: {exc}")
            self._fail(job.id, JobStep.EMBEDDING, f"Failed to enqueue matching job: {describe_error(exc)}")
            raise MatchingDispatchError(f"Failed to enqueue matching job {job.id}") from exc

        logger.info(f"Started matching job {job.id} for {user_id}")
        return StartResult(job_id=job.id, created=True)

    # ==================== Run ====================

    def run_job(self, job_id: str) -> JobOutcome:
        """
        Execute one matching job to a terminal state.

        Never raises for processing errors; they are written to the job.

        Raises:
            JobNotFoundError: If the job id is unknown
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.is_terminal:
            logger.warning(f"Matching job {job_id} is already {job.status}, skipping")
            return JobOutcome(job_id=job_id, status=job.status, error_message=job.error_message)

        step = JobStep.EMBEDDING
        try:
            self._update(job_id, 10, step)
            requester = self._load_requester(job.user_id)

            requester_embedding = self._requester_embedding(job_id, requester)

            step = JobStep.CALCULATING
            self._update(job_id, 50, step)
            candidates = self.store.list_eligible_candidates(job.user_id)
            logger.info(f"Job {job_id}: scoring {len(candidates)} candidates for {job.user_id}")

            candidate_embeddings = self._candidate_embeddings(candidates)
            requester_vector = create_feature_vector(requester.onboarding_data)
            scores = [
                score
                for score in (
                    self._score_candidate(
                        requester_vector,
                        requester_embedding,
                        candidate,
                        candidate_embeddings.get(candidate.id),
                    )
                    for candidate in candidates
                )
                if score is not None
            ]

            step = JobStep.RANKING
            self._update(job_id, 80, step)
            ranked = sorted(scores, key=lambda s: s.score, reverse=True)

            rows = [
                MatchResult(
                    user_id=job.user_id,
                    matched_user_id=s.user_id,
                    match_percentage=s.score,
                    rank=rank,
                )
                for rank, s in enumerate(ranked, start=1)
            ]
            self._persist_results(job_id, job.user_id, rows)

            self._set_status(job_id, JobStatus.COMPLETED, 100, JobStep.RANKING)
            record_job_outcome("completed")
            logger.info(f"Matching job {job_id} completed with {len(rows)} matches")
            return JobOutcome(job_id=job_id, status=JobStatus.COMPLETED.value, matches=len(rows))

        except JobAlreadyFinishedError as exc:
            logger.warning(f"Stopping matching job {job_id} during {step.value}: {exc}")
            current = self.store.get_job(job_id)
            return JobOutcome(
                job_id=job_id,
                status=current.status if current else exc.status,
                error_message=current.error_message if current else None,
            )

        except SoftTimeLimitExceeded:
            logger.error(f"Matching job {job_id} timed out during {step.value}")
            self._fail(job_id, step, JOB_TIMEOUT_MESSAGE)
            return JobOutcome(job_id=job_id, status=JobStatus.FAILED.value, error_message=JOB_TIMEOUT_MESSAGE)

        except Exception as exc:
            message = describe_error(exc)
            logger.error(f"Matching job {job_id} failed during {step.value}: {message}")
            self._fail(job_id, step, message)
            return JobOutcome(job_id=job_id, status=JobStatus.FAILED.value, error_message=message)

    # ==================== Helpers ====================

    def _update(self, job_id: str, progress: int, step: JobStep) -> None:
        self._set_status(job_id, JobStatus.PROCESSING, progress, step)

    def _set_status(self, job_id: str, status: JobStatus, progress: int, step: JobStep) -> None:
        """Write job state; raises JobAlreadyFinishedError if the job was finished elsewhere."""
        if not self.store.update_job_status(job_id, status, progress, step):
            current = self.store.get_job(job_id)
            raise JobAlreadyFinishedError(job_id, current.status if current else "gone")

    def _fail(self, job_id: str, step: JobStep, message: str) -> None:
        try:
            self.store.update_job_status(job_id, JobStatus.FAILED, 0, step, error_message=message)
        except Exception:
            logger.exception(f"Could not record failure of matching job {job_id}")
        record_job_outcome("failed")

    def _load_requester(self, user_id: str) -> ProfileRecord:
        requester = self.store.get_profile(user_id)
        if requester is None:
            raise ProfileNotFoundError("User profile not found")
        if not isinstance(requester.onboarding_data, Mapping):
            raise OnboardingDataMissingError("Onboarding data not found")
        return requester

    def _generate_embedding(self, profile: ProfileRecord, owner: str) -> Optional[List[float]]:
        """Regenerate and cache an embedding; None if the backend failed."""
        try:
            embedding = generate_user_embedding(profile.onboarding_data, self.embedding_provider)
        except SoftTimeLimitExceeded:
            raise
        except Exception as exc:
            logger.warning(f"Embedding generation failed for {owner} {profile.id}: {exc}")
            return None

        return self._accept_embedding(profile, embedding, owner)

    def _accept_embedding(self, profile: ProfileRecord, embedding: List[float], owner: str) -> Optional[List[float]]:
        """Validate a fresh embedding and cache it best-effort; None if invalid."""
        if not is_valid_embedding(embedding, self.dimensions):
            logger.warning(
                f"Discarding embedding for {owner} {profile.id}: "
                f"expected {self.dimensions} finite values, got {len(embedding)}"
            )
            return None

        try:
            self.store.upsert_embedding(profile.id, embedding)
            record_embedding_generated(owner)
        except SoftTimeLimitExceeded:
            raise
        except Exception as exc:
            logger.warning(f"Could not cache embedding for {owner} {profile.id}: {exc}")
        return embedding

    def _requester_embedding(self, job_id: str, requester: ProfileRecord) -> Optional[List[float]]:
        if is_valid_embedding(requester.embedding, self.dimensions):
            return requester.embedding

        self._update(job_id, 30, JobStep.EMBEDDING)
        return self._generate_embedding(requester, "requester")

    def _candidate_embeddings(self, candidates: List[ProfileRecord]) -> Dict[str, List[float]]:
        """
        Usable embedding per candidate id.

        Cached embeddings are reused. The rest are generated with a single
        embed_batch call; if the batch fails, each is retried on its own so
        one bad text cannot zero the whole pool. Candidates without a usable
        embedding are left out.
        """
        embeddings: Dict[str, List[float]] = {}
        missing: List[ProfileRecord] = []
        for candidate in candidates:
            if not isinstance(candidate.onboarding_data, Mapping):
                continue
            if is_valid_embedding(candidate.embedding, self.dimensions):
                embeddings[candidate.id] = candidate.embedding
            else:
                missing.append(candidate)

        if not missing:
            return embeddings

        try:
            generated = generate_user_embeddings(
                [c.onboarding_data for c in missing], self.embedding_provider
            )
        except SoftTimeLimitExceeded:
            raise
        except Exception as exc:
            logger.warning(
                f"Batch embedding failed for {len(missing)} candidates, retrying one by one: {exc}"
            )
            generated = [self._generate_embedding(c, "candidate") for c in missing]
        else:
            generated = [
                self._accept_embedding(c, e, "candidate") for c, e in zip(missing, generated)
            ]

        for candidate, embedding in zip(missing, generated):
            if embedding is not None:
                embeddings[candidate.id] = embedding
        return embeddings

    def _score_candidate(
        self,
        requester_vector: FeatureVector,
        requester_embedding: Optional[List[float]],
        candidate: ProfileRecord,
        candidate_embedding: Optional[List[float]],
    ) -> Optional[CandidateScore]:
        """Score one candidate; None if the candidate has no onboarding answers."""
        if not isinstance(candidate.onboarding_data, Mapping):
            return None

        try:
            candidate_vector = create_feature_vector(candidate.onboarding_data)
            categorical = calculate_categorical_similarity(requester_vector, candidate_vector)
        except SoftTimeLimitExceeded:
            raise
        except Exception:
            logger.exception(f"Categorical scoring failed for candidate {candidate.id}")
            categorical = 0

        embedding_score = 0.0
        if requester_embedding is not None and candidate_embedding is not None:
            embedding_score = calculate_embedding_similarity(requester_embedding, candidate_embedding)

        record_score_calculated()
        return CandidateScore(
            user_id=candidate.id,
            score=blend_scores(categorical, embedding_score),
            categorical_score=categorical,
            embedding_score=embedding_score,
        )

    def _persist_results(self, job_id: str, user_id: str, rows: List[MatchResult]) -> None:
        """Replace results, retrying the whole delete+insert unit while the job is still running."""
        last_error: Optional[ResultPersistenceError] = None
        for attempt in range(1, self.result_write_attempts + 1):
            try:
                self.store.replace_results(user_id, rows, job_id=job_id)
                return
            except ResultPersistenceError as exc:
                last_error = exc
                logger.warning(
                    f"Saving results for {user_id} failed "
                    f"(attempt {attempt}/{self.result_write_attempts}): {exc}"
                )
        raise last_error
