from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from typing import Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class StartMatchingResponse(CamelModel):
    job_id: str
    message: str


class MatchingJobResponse(CamelModel):
    id: str
    user_id: str
    status: str
    progress: int
    current_step: str
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("created_at", "started_at", "completed_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Timestamps are stored as naive UTC; serialize them with an offset."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class CandidateProfileResponse(CamelModel):
    id: str
    display_name: str
    headline: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    avatar_url: Optional[str] = None
    skills: list[str] = []
    work_styles: list[str] = []
    industries: list[str] = []
    github: Optional[str] = None
    linkedin: Optional[str] = None
    website: Optional[str] = None


class MatchResultResponse(CamelModel):
    id: str
    match_percentage: int
    rank: int
    profile: CandidateProfileResponse


class MatchingResultsResponse(CamelModel):
    matches: list[MatchResultResponse]
    total_count: int
