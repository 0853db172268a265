from fastapi import APIRouter, Depends, HTTPException, status

from tutordesk.core.config import Settings, get_settings
from tutordesk.core.security import get_human_principal, require_scopes_or_403
from tutordesk.schemas.metrics import ResponseTimeOut, TutorMetricsOut
from tutordesk.services.metrics import measure_response_time, recalculate_response_time
from tutordesk.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()


@router.get("", response_model=TutorMetricsOut)
async def get_tutor_metrics(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> TutorMetricsOut:
    tutor_id = require_scopes_or_403(principal, {"metrics:read"})

    try:
        profile = await repository.get_tutor_profile(tutor_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tutor profile not found")
    return TutorMetricsOut(**profile)


@router.get("/response-time", response_model=ResponseTimeOut)
async def get_response_time(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> ResponseTimeOut:
    tutor_id = require_scopes_or_403(principal, {"metrics:read"})

    hours, pairs = await measure_response_time(
        repository,
        tutor_id=tutor_id,
        sample_size=settings.response_time_sample_size,
    )
    return ResponseTimeOut(response_time_hours=hours, sampled_pairs=pairs, persisted=False)


@router.post("/response-time/recalculate", response_model=ResponseTimeOut)
async def recalculate(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> ResponseTimeOut:
    tutor_id = require_scopes_or_403(principal, {"metrics:read"})

    result = await recalculate_response_time(
        repository,
        tutor_id=tutor_id,
        sample_size=settings.response_time_sample_size,
    )
    return ResponseTimeOut(**result)
