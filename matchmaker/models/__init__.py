from matchmaker.models.profile import Profile
from matchmaker.models.matching import MatchingJob, Match, JobStatus, JobStep, ACTIVE_STATUSES

__all__ = [
    "Profile",
    "MatchingJob",
    "Match",
    "JobStatus",
    "JobStep",
    "ACTIVE_STATUSES",
]
