"""
Tests for the matching orchestrator.

Tests cover:
- Idempotent job start and dispatch failure
- Full run: progress sequence, ranking, result replacement
- Embedding regeneration, batching and caching
- Degraded runs (embedding backend down)
- Failure paths: missing profile, missing onboarding, persistence, timeout
- Jobs failed by the stale sweep while still running
- Job status reader
"""
from datetime import timedelta
from unittest.mock import Mock

import pytest
from celery.exceptions import SoftTimeLimitExceeded

from matchmaker.exceptions import (
    JobAccessDeniedError,
    JobNotFoundError,
    MatchingDispatchError,
    ResultPersistenceError,
)
from matchmaker.models import JobStatus
from matchmaker.models.matching import utcnow
from matchmaker.services.embedding_providers import HashEmbeddingProvider
from matchmaker.services.job_status import JobStatusReader
from matchmaker.services.orchestrator import JOB_TIMEOUT_MESSAGE, MatchingOrchestrator
from matchmaker.services.similarity import blend_scores, calculate_categorical_similarity
from matchmaker.services.store import SqlAlchemyMatchStore
from matchmaker.services.vectorizer import create_feature_vector

TEST_DIMENSIONS = 32


class RecordingStore(SqlAlchemyMatchStore):
    """Store that records status writes and can fail result writes."""

    def __init__(self, session_factory, failing_writes=0):
        super().__init__(session_factory)
        self.updates = []
        self.replace_calls = 0
        self.failing_writes = failing_writes

    def update_job_status(self, job_id, status, progress, current_step, error_message=None):
        self.updates.append((JobStatus(status).value, progress, getattr(current_step, "value", current_step)))
        return super().update_job_status(job_id, status, progress, current_step, error_message)

    def replace_results(self, user_id, results, job_id=None):
        self.replace_calls += 1
        if self.replace_calls <= self.failing_writes:
            raise ResultPersistenceError("Failed to save matching results: database is locked")
        return super().replace_results(user_id, results, job_id=job_id)


class FailingProvider:
    dimensions = TEST_DIMENSIONS
    name = "failing"

    def __init__(self, error=None):
        self.error = error or RuntimeError("embedding backend unavailable")

    def embed(self, text):
        raise self.error

    def embed_batch(self, texts):
        raise self.error


class CountingProvider(HashEmbeddingProvider):
    """Hash provider that records how it was called."""

    def __init__(self, dimensions=TEST_DIMENSIONS, fail_batch=False):
        super().__init__(dimensions)
        self.embed_calls = 0
        self.batches = []
        self.fail_batch = fail_batch

    def embed(self, text):
        self.embed_calls += 1
        return super().embed(text)

    def embed_batch(self, texts):
        self.batches.append(list(texts))
        if self.fail_batch:
            raise RuntimeError("batch endpoint unavailable")
        return super().embed_batch(texts)


class SweepingProvider(HashEmbeddingProvider):
    """Hash provider during whose calls the stale job sweep fails every active job."""

    def __init__(self, store):
        super().__init__(TEST_DIMENSIONS)
        self.store = store

    def _sweep(self):
        far_future = utcnow() + timedelta(days=1)
        self.store.fail_stale_jobs(far_future, far_future, JOB_TIMEOUT_MESSAGE)

    def embed(self, text):
        self._sweep()
        return super().embed(text)

    def embed_batch(self, texts):
        self._sweep()
        return super().embed_batch(texts)


@pytest.fixture
def provider():
    return HashEmbeddingProvider(dimensions=TEST_DIMENSIONS)


@pytest.fixture
def dispatch():
    return Mock()


@pytest.fixture
def recording_store(session_factory):
    return RecordingStore(session_factory)


@pytest.fixture
def orchestrator(recording_store, provider, dispatch):
    return MatchingOrchestrator(recording_store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)


def results_for(store, user_id):
    return [(r.profile.id, r.match_percentage, r.rank) for r in store.list_results(user_id, limit=100)]


class TestStart:
    """Tests for MatchingOrchestrator.start."""

    def test_creates_and_dispatches_job(self, orchestrator, recording_store, dispatch, add_profile):
        add_profile("alice", onboarding={})

        result = orchestrator.start("alice")

        assert result.created is True
        dispatch.assert_called_once_with(result.job_id)
        assert recording_store.get_job(result.job_id).status == "pending"

    def test_returns_active_job(self, orchestrator, dispatch, add_profile):
        add_profile("alice", onboarding={})

        first = orchestrator.start("alice")
        second = orchestrator.start("alice")

        assert second.job_id == first.job_id
        assert second.created is False
        assert dispatch.call_count == 1

    def test_new_job_after_completion(self, orchestrator, dispatch, add_profile):
        add_profile("alice", onboarding={})

        first = orchestrator.start("alice")
        orchestrator.run_job(first.job_id)
        second = orchestrator.start("alice")

        assert second.created is True
        assert second.job_id != first.job_id

    def test_dispatch_failure_fails_job(self, orchestrator, recording_store, dispatch, add_profile):
        add_profile("alice", onboarding={})
        dispatch.side_effect = ConnectionError("broker unreachable")

        with pytest.raises(MatchingDispatchError):
            orchestrator.start("alice")

        job = recording_store.find_active_job("alice")
        assert job is None
        assert recording_store.updates[-1][0] == "failed"


class TestRunJob:
    """Tests for a complete matching run."""

    def test_completes_with_ranked_results(self, orchestrator, recording_store, add_profile, full_onboarding):
        add_profile("alice", onboarding=full_onboarding)
        add_profile("bob", onboarding={"industries": ["Fintech"]})
        add_profile("carol", onboarding=full_onboarding)
        add_profile("dave", onboarding={})
        job_id = orchestrator.start("alice").job_id

        outcome = orchestrator.run_job(job_id)

        assert outcome.status == "completed"
        assert outcome.matches == 3
        results = results_for(recording_store, "alice")
        assert [r[0] for r in results] == ["carol", "bob", "dave"]
        assert [r[2] for r in results] == [1, 2, 3]
        assert results[0][1] == 100

        job = recording_store.get_job(job_id)
        assert job.status == "completed"
        assert job.progress == 100
        assert job.current_step == "ranking"
        assert job.completed_at is not None

    def test_progress_sequence_with_regenerated_embedding(self, orchestrator, recording_store, add_profile):
        add_profile("alice", onboarding={"industries": ["Fintech"]})
        job_id = orchestrator.start("alice").job_id

        orchestrator.run_job(job_id)

        assert recording_store.updates == [
            ("processing", 10, "embedding"),
            ("processing", 30, "embedding"),
            ("processing", 50, "calculating"),
            ("processing", 80, "ranking"),
            ("completed", 100, "ranking"),
        ]

    def test_progress_skips_regeneration_for_valid_embedding(self, orchestrator, recording_store, add_profile, provider):
        add_profile("alice", onboarding={}, embedding=provider.embed("cached"))
        job_id = orchestrator.start("alice").job_id

        orchestrator.run_job(job_id)

        assert [u[1] for u in recording_store.updates] == [10, 50, 80, 100]

    def test_shared_industry_ranks_first(self, orchestrator, recording_store, add_profile):
        add_profile("requester", onboarding={"industries": ["AI/Machine Learning"]})
        add_profile("a", onboarding={"industries": ["AI/Machine Learning"]})
        add_profile("b", onboarding={})
        job_id = orchestrator.start("requester").job_id

        orchestrator.run_job(job_id)

        results = results_for(recording_store, "requester")
        assert [r[0] for r in results] == ["a", "b"]
        assert results[0][1] > results[1][1]

    def test_scores_blend_categorical_and_embedding(self, recording_store, dispatch, add_profile, full_onboarding):
        provider = HashEmbeddingProvider(TEST_DIMENSIONS)
        orchestrator = MatchingOrchestrator(recording_store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        add_profile("alice", onboarding=full_onboarding)
        add_profile("bob", onboarding=full_onboarding)
        job_id = orchestrator.start("alice").job_id

        orchestrator.run_job(job_id)

        vector = create_feature_vector(full_onboarding)
        expected = blend_scores(calculate_categorical_similarity(vector, vector), 100.0)
        assert results_for(recording_store, "alice") == [("bob", expected, 1)]

    def test_excludes_self_incomplete_and_missing_onboarding(self, orchestrator, recording_store, add_profile):
        add_profile("alice", onboarding={})
        add_profile("bob", onboarding={})
        add_profile("carol", onboarding={}, completed=False)
        add_profile("dave", onboarding=None)
        add_profile("erin", onboarding="not a mapping")
        job_id = orchestrator.start("alice").job_id

        outcome = orchestrator.run_job(job_id)

        assert outcome.matches == 1
        assert [r[0] for r in results_for(recording_store, "alice")] == ["bob"]

    def test_no_candidates_completes_empty(self, orchestrator, recording_store, add_profile):
        add_profile("alice", onboarding={})
        job_id = orchestrator.start("alice").job_id

        outcome = orchestrator.run_job(job_id)

        assert outcome.status == "completed"
        assert results_for(recording_store, "alice") == []

    def test_rerun_replaces_previous_results(self, orchestrator, recording_store, add_profile, session_factory):
        add_profile("alice", onboarding={})
        add_profile("bob", onboarding={})
        add_profile("carol", onboarding={})
        orchestrator.run_job(orchestrator.start("alice").job_id)
        assert len(results_for(recording_store, "alice")) == 2

        from matchmaker.models import Profile
        with session_factory() as session:
            session.get(Profile, "carol").onboarding_completed = False
            session.commit()
        orchestrator.run_job(orchestrator.start("alice").job_id)

        assert [r[0] for r in results_for(recording_store, "alice")] == ["bob"]

    def test_equal_scores_keep_candidate_order(self, orchestrator, recording_store, add_profile, provider):
        add_profile("alice", onboarding={}, embedding=provider.embed("same"))
        for name in ("b1", "b2", "b3"):
            add_profile(name, onboarding={}, embedding=provider.embed("same"))
        job_id = orchestrator.start("alice").job_id

        orchestrator.run_job(job_id)

        results = results_for(recording_store, "alice")
        assert len({r[1] for r in results}) == 1
        assert [r[0] for r in results] == ["b1", "b2", "b3"]

    def test_terminal_job_is_skipped(self, orchestrator, recording_store, add_profile):
        add_profile("alice", onboarding={})
        job_id = orchestrator.start("alice").job_id
        orchestrator.run_job(job_id)
        update_count = len(recording_store.updates)

        outcome = orchestrator.run_job(job_id)

        assert outcome.status == "completed"
        assert len(recording_store.updates) == update_count

    def test_unknown_job_raises(self, orchestrator):
        with pytest.raises(JobNotFoundError):
            orchestrator.run_job("missing")


class TestEmbeddingCache:
    """Tests for requester and candidate embedding caching."""

    def test_requester_and_candidate_embeddings_cached(self, orchestrator, recording_store, add_profile, full_onboarding):
        add_profile("alice", onboarding=full_onboarding)
        add_profile("bob", onboarding={"industries": ["Fintech"]})

        orchestrator.run_job(orchestrator.start("alice").job_id)

        assert len(recording_store.get_profile("alice").embedding) == TEST_DIMENSIONS
        assert len(recording_store.get_profile("bob").embedding) == TEST_DIMENSIONS

    @pytest.mark.parametrize("stored", [[0.1, 0.2], [0.1] * (TEST_DIMENSIONS - 1) + ["x"], "vector"])
    def test_invalid_cached_embedding_regenerated(self, orchestrator, recording_store, add_profile, stored):
        add_profile("alice", onboarding={"industries": ["Fintech"]}, embedding=stored)

        orchestrator.run_job(orchestrator.start("alice").job_id)

        assert len(recording_store.get_profile("alice").embedding) == TEST_DIMENSIONS

    def test_valid_cached_embedding_reused(self, orchestrator, recording_store, add_profile):
        cached = [1.0] + [0.0] * (TEST_DIMENSIONS - 1)
        add_profile("alice", onboarding={"industries": ["Fintech"]}, embedding=cached)

        orchestrator.run_job(orchestrator.start("alice").job_id)

        assert recording_store.get_profile("alice").embedding == cached

    def test_candidates_embedded_in_one_batch(self, recording_store, dispatch, add_profile, full_onboarding):
        provider = CountingProvider()
        orchestrator = MatchingOrchestrator(recording_store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        add_profile("alice", onboarding=full_onboarding)
        add_profile("bob", onboarding={"industries": ["Fintech"]})
        add_profile("carol", onboarding={"goals": ["Launch MVP quickly"]})
        add_profile("dave", onboarding={}, embedding=provider.embed("cached"))
        add_profile("erin", onboarding=None)
        provider.embed_calls = 0

        orchestrator.run_job(orchestrator.start("alice").job_id)

        # Requester alone, then the two candidates without a cached vector
        assert provider.embed_calls == 1
        assert len(provider.batches) == 1
        assert len(provider.batches[0]) == 2
        assert len(recording_store.get_profile("bob").embedding) == TEST_DIMENSIONS
        assert len(recording_store.get_profile("carol").embedding) == TEST_DIMENSIONS

    def test_no_batch_when_all_cached(self, recording_store, dispatch, add_profile):
        provider = CountingProvider()
        orchestrator = MatchingOrchestrator(recording_store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        add_profile("alice", onboarding={}, embedding=provider.embed("a"))
        add_profile("bob", onboarding={}, embedding=provider.embed("b"))

        orchestrator.run_job(orchestrator.start("alice").job_id)

        assert provider.batches == []

    def test_failed_batch_falls_back_to_single_calls(self, recording_store, dispatch, add_profile, full_onboarding):
        provider = CountingProvider(fail_batch=True)
        orchestrator = MatchingOrchestrator(recording_store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        add_profile("alice", onboarding=full_onboarding)
        add_profile("bob", onboarding=full_onboarding)
        add_profile("carol", onboarding={})

        outcome = orchestrator.run_job(orchestrator.start("alice").job_id)

        assert outcome.status == "completed"
        assert len(provider.batches) == 1
        assert provider.embed_calls == 3
        assert len(recording_store.get_profile("bob").embedding) == TEST_DIMENSIONS
        assert len(recording_store.get_profile("carol").embedding) == TEST_DIMENSIONS
        assert results_for(recording_store, "alice")[0] == ("bob", 100, 1)


class TestDegradedRuns:
    """Embedding failures zero the embedding score but never fail the job."""

    def test_provider_down_uses_categorical_only(self, recording_store, dispatch, add_profile, full_onboarding):
        orchestrator = MatchingOrchestrator(
            recording_store, FailingProvider(), dispatch=dispatch, dimensions=TEST_DIMENSIONS
        )
        add_profile("alice", onboarding=full_onboarding)
        add_profile("bob", onboarding=full_onboarding)

        outcome = orchestrator.run_job(orchestrator.start("alice").job_id)

        assert outcome.status == "completed"
        # 100 * 0.9 + 0 * 0.1
        assert results_for(recording_store, "alice") == [("bob", 90, 1)]
        assert recording_store.get_profile("alice").embedding is None

    def test_wrong_dimension_discarded(self, recording_store, dispatch, add_profile):
        orchestrator = MatchingOrchestrator(
            recording_store, HashEmbeddingProvider(8), dispatch=dispatch, dimensions=TEST_DIMENSIONS
        )
        add_profile("alice", onboarding={})
        add_profile("bob", onboarding={})

        outcome = orchestrator.run_job(orchestrator.start("alice").job_id)

        assert outcome.status == "completed"
        assert recording_store.get_profile("bob").embedding is None

    def test_cache_write_failure_keeps_vector(self, session_factory, provider, dispatch, add_profile, full_onboarding):
        class NoCacheStore(RecordingStore):
            def upsert_embedding(self, user_id, embedding):
                raise RuntimeError("read-only replica")

        store = NoCacheStore(session_factory)
        orchestrator = MatchingOrchestrator(store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        add_profile("alice", onboarding=full_onboarding)
        add_profile("bob", onboarding=full_onboarding)

        outcome = orchestrator.run_job(orchestrator.start("alice").job_id)

        assert outcome.status == "completed"
        assert results_for(store, "alice") == [("bob", 100, 1)]


class TestFailures:
    """Tests for failed jobs."""

    def test_missing_profile(self, orchestrator, recording_store, add_profile, session_factory):
        add_profile("alice", onboarding={})
        job_id = orchestrator.start("alice").job_id

        from matchmaker.models import Profile
        with session_factory() as session:
            session.delete(session.get(Profile, "alice"))
            session.commit()

        outcome = orchestrator.run_job(job_id)

        job = recording_store.get_job(job_id)
        assert outcome.status == "failed"
        assert job.status == "failed"
        assert job.progress == 0
        assert job.error_message == "User profile not found"
        assert job.completed_at is not None

    def test_missing_onboarding(self, orchestrator, recording_store, add_profile):
        add_profile("alice", onboarding=None)
        job_id = orchestrator.start("alice").job_id

        orchestrator.run_job(job_id)

        job = recording_store.get_job(job_id)
        assert job.status == "failed"
        assert job.error_message == "Onboarding data not found"
        assert job.current_step == "embedding"

    def test_persistence_retried_then_succeeds(self, session_factory, provider, dispatch, add_profile):
        store = RecordingStore(session_factory, failing_writes=2)
        orchestrator = MatchingOrchestrator(store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        add_profile("alice", onboarding={})
        add_profile("bob", onboarding={})

        outcome = orchestrator.run_job(orchestrator.start("alice").job_id)

        assert outcome.status == "completed"
        assert store.replace_calls == 3
        assert len(results_for(store, "alice")) == 1

    def test_persistence_failure_fails_job(self, session_factory, provider, dispatch, add_profile):
        store = RecordingStore(session_factory, failing_writes=10)
        orchestrator = MatchingOrchestrator(
            store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS, result_write_attempts=3
        )
        add_profile("alice", onboarding={})
        add_profile("bob", onboarding={})
        job_id = orchestrator.start("alice").job_id

        outcome = orchestrator.run_job(job_id)

        job = store.get_job(job_id)
        assert outcome.status == "failed"
        assert store.replace_calls == 3
        assert job.current_step == "ranking"
        assert job.error_message.startswith("Failed to save matching results")
        assert results_for(store, "alice") == []

    def test_timeout_fails_job(self, recording_store, dispatch, add_profile):
        orchestrator = MatchingOrchestrator(
            recording_store, FailingProvider(SoftTimeLimitExceeded()), dispatch=dispatch, dimensions=TEST_DIMENSIONS
        )
        add_profile("alice", onboarding={})
        job_id = orchestrator.start("alice").job_id

        outcome = orchestrator.run_job(job_id)

        job = recording_store.get_job(job_id)
        assert outcome.error_message == JOB_TIMEOUT_MESSAGE
        assert job.status == "failed"
        assert job.error_message == "Matching job timed out"


class TestSweptWhileRunning:
    """A job failed by the stale sweep mid-run stays failed and keeps the old results."""

    def test_stops_after_requester_embedding(self, recording_store, dispatch, add_profile):
        orchestrator = MatchingOrchestrator(
            recording_store, SweepingProvider(recording_store), dispatch=dispatch, dimensions=TEST_DIMENSIONS
        )
        add_profile("alice", onboarding={"industries": ["Fintech"]})
        add_profile("bob", onboarding={"industries": ["Fintech"]})
        job_id = orchestrator.start("alice").job_id

        outcome = orchestrator.run_job(job_id)

        job = recording_store.get_job(job_id)
        assert outcome.status == "failed"
        assert outcome.error_message == JOB_TIMEOUT_MESSAGE
        assert job.status == "failed"
        assert job.error_message == JOB_TIMEOUT_MESSAGE
        assert job.progress == 0
        assert results_for(recording_store, "alice") == []
        assert recording_store.replace_calls == 0
        assert ("completed", 100, "ranking") not in recording_store.updates

    def test_previous_results_survive(self, recording_store, dispatch, add_profile, provider):
        add_profile("alice", onboarding={"industries": ["Fintech"]})
        add_profile("bob", onboarding={"industries": ["Fintech"]})
        first = MatchingOrchestrator(recording_store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        first.run_job(first.start("alice").job_id)
        add_profile("carol", onboarding={"industries": ["Fintech"]})

        # Requester and bob are cached now; the sweep fires during carol's batch
        orchestrator = MatchingOrchestrator(
            recording_store, SweepingProvider(recording_store), dispatch=dispatch, dimensions=TEST_DIMENSIONS
        )
        job_id = orchestrator.start("alice").job_id
        outcome = orchestrator.run_job(job_id)

        assert outcome.status == "failed"
        assert recording_store.get_job(job_id).status == "failed"
        assert [r[0] for r in results_for(recording_store, "alice")] == ["bob"]

    def test_sweep_before_result_write(self, session_factory, provider, dispatch, add_profile):
        class SweptBeforeWriteStore(RecordingStore):
            def replace_results(self, user_id, results, job_id=None):
                far_future = utcnow() + timedelta(days=1)
                self.fail_stale_jobs(far_future, far_future, JOB_TIMEOUT_MESSAGE)
                return super().replace_results(user_id, results, job_id=job_id)

        store = SweptBeforeWriteStore(session_factory)
        orchestrator = MatchingOrchestrator(store, provider, dispatch=dispatch, dimensions=TEST_DIMENSIONS)
        add_profile("alice", onboarding={})
        add_profile("bob", onboarding={})
        job_id = orchestrator.start("alice").job_id

        outcome = orchestrator.run_job(job_id)

        assert outcome.status == "failed"
        assert store.replace_calls == 1
        assert store.get_job(job_id).error_message == JOB_TIMEOUT_MESSAGE
        assert results_for(store, "alice") == []


class TestJobStatusReader:
    def test_owner_reads_job(self, store, add_profile):
        add_profile("alice", onboarding={})
        job = store.create_job("alice")

        assert JobStatusReader(store).get_status(job.id, "alice") == job

    def test_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            JobStatusReader(store).get_status("missing", "alice")

    def test_other_users_job(self, store, add_profile):
        add_profile("alice", onboarding={})
        job = store.create_job("alice")

        with pytest.raises(JobAccessDeniedError):
            JobStatusReader(store).get_status(job.id, "mallory")
