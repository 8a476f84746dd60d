"""Read-only projection of matching job state for polling clients."""

from matchmaker.exceptions import JobAccessDeniedError, JobNotFoundError
from matchmaker.services.store import JobRecord, MatchStore


class JobStatusReader:
    def __init__(self, store: MatchStore) -> None:
        self.store = store

    def get_status(self, job_id: str, user_id: str) -> JobRecord:
        """
        Look up a job on behalf of a caller.

        Args:
            job_id: Job to read
            user_id: Caller's profile id

        Returns:
            Current job state

        Raises:
            JobNotFoundError: Unknown job id
            JobAccessDeniedError: Job belongs to another user
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.user_id != user_id:
            raise JobAccessDeniedError(job_id)
        return job
