from collections.abc import Mapping
from fastapi import APIRouter, Depends, HTTPException, Response, status
from matchmaker.auth import get_current_user
from matchmaker.config import get_settings
from matchmaker.dependencies import get_job_status_reader, get_orchestrator, get_store
from matchmaker.exceptions import JobAccessDeniedError, JobNotFoundError, MatchingDispatchError
from matchmaker.schemas import (
    CandidateProfileResponse,
    MatchingJobResponse,
    MatchingResultsResponse,
    MatchResultResponse,
    StartMatchingResponse,
)
from matchmaker.services.job_status import JobStatusReader
from matchmaker.services.orchestrator import MatchingOrchestrator
from matchmaker.services.store import MatchStore

router = APIRouter()


@router.post("/calculate", response_model=StartMatchingResponse, status_code=status.HTTP_201_CREATED)
def start_matching(
    response: Response,
    user_id: str = Depends(get_current_user),
    store: MatchStore = Depends(get_store),
    orchestrator: MatchingOrchestrator = Depends(get_orchestrator),
):
    profile = store.get_profile(user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    if not profile.onboarding_completed:
        raise HTTPException(status_code=400, detail="Onboarding not completed")
    if not isinstance(profile.onboarding_data, Mapping):
        raise HTTPException(status_code=400, detail="Project preferences not found")

    try:
        result = orchestrator.start(user_id)
    except MatchingDispatchError:
        raise HTTPException(status_code=503, detail="Matching service unavailable")

    if not result.created:
        response.status_code = status.HTTP_200_OK
        return StartMatchingResponse(job_id=result.job_id, message="Matching already in progress")

    return StartMatchingResponse(job_id=result.job_id, message="Matching started successfully")


@router.get("/status/{job_id}", response_model=MatchingJobResponse)
def get_matching_status(
    job_id: str,
    user_id: str = Depends(get_current_user),
    reader: JobStatusReader = Depends(get_job_status_reader),
):
    try:
        job = reader.get_status(job_id, user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Matching job not found")
    except JobAccessDeniedError:
        raise HTTPException(status_code=403, detail="Access denied")

    return MatchingJobResponse.model_validate(job)


@router.get("/results/{requester_id}", response_model=MatchingResultsResponse)
def get_matching_results(
    requester_id: str,
    user_id: str = Depends(get_current_user),
    store: MatchStore = Depends(get_store),
):
    if requester_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")

    rows = store.list_results(user_id, limit=get_settings().results_limit)
    matches = [
        MatchResultResponse(
            id=row.id,
            match_percentage=row.match_percentage,
            rank=row.rank,
            profile=CandidateProfileResponse(
                id=row.profile.id,
                display_name=row.profile.display_name,
                headline=row.profile.headline,
                role=row.profile.role,
                status=row.profile.status,
                avatar_url=row.profile.avatar_url,
                skills=row.profile.skills,
                work_styles=row.profile.work_styles,
                industries=row.profile.industries,
                github=row.profile.github,
                linkedin=row.profile.x,
                website=row.profile.website,
            ),
        )
        for row in rows
    ]

    return MatchingResultsResponse(matches=matches, total_count=len(matches))
