from matchmaker.schemas.onboarding import OnboardingProfile
from matchmaker.schemas.matching import (
    StartMatchingResponse,
    MatchingJobResponse,
    CandidateProfileResponse,
    MatchResultResponse,
    MatchingResultsResponse,
)

__all__ = [
    "OnboardingProfile",
    "StartMatchingResponse",
    "MatchingJobResponse",
    "CandidateProfileResponse",
    "MatchResultResponse",
    "MatchingResultsResponse",
]
