"""
Matching engine exceptions.

Precondition errors and persistence errors fail the job. Embedding errors
are recovered per candidate. Reader errors map to 404/403 in the API.
"""


class MatchingError(Exception):
    """Base exception for matching engine errors."""
    pass


class ProfileNotFoundError(MatchingError):
    """Raised when the requester's profile row does not exist."""
    pass


class OnboardingDataMissingError(MatchingError):
    """Raised when the requester has no onboarding answers."""
    pass


class EmbeddingError(MatchingError):
    """Raised when an embedding backend fails."""
    pass


class EmbeddingDimensionError(EmbeddingError):
    """Raised when a backend returns a vector of the wrong length."""

    def __init__(self, actual: int, expected: int):
        super().__init__(f"Unexpected embedding dim: {actual}. Expected {expected}")
        self.actual = actual
        self.expected = expected


class ResultPersistenceError(MatchingError):
    """Raised when ranked results could not be saved."""
    pass


class MatchingDispatchError(MatchingError):
    """Raised when a new job could not be handed to the worker queue."""
    pass


class JobNotFoundError(MatchingError):
    """Raised when a job id is unknown."""
    pass


class JobAccessDeniedError(MatchingError):
    """Raised when a job belongs to a different user."""
    pass


class JobAlreadyFinishedError(MatchingError):
    """Raised when a running job was moved to a terminal state by someone else."""

    def __init__(self, job_id: str, status: str):
        super().__init__(f"Matching job {job_id} is already {status}")
        self.job_id = job_id
        self.status = status
