import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from tutordesk.core.security import get_human_principal, require_scopes_or_403
from tutordesk.schemas.requirements import (
    RequirementOut,
    RequirementResponseOut,
    RequirementResponseRequest,
    SideEffectWarningOut,
)
from tutordesk.services.repository import get_repository
from tutordesk.services.requirements_feed import RequirementFeed
from tutordesk.services.responses import (
    PrimaryWriteFailedError,
    RequirementNotFoundError,
    ResponseCoordinator,
)

router = APIRouter()


@router.get("", response_model=list[RequirementOut])
async def list_requirements(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> list[RequirementOut]:
    tutor_id = require_scopes_or_403(principal, {"requirements:read"})

    # Feed failures degrade to an empty or partially annotated list.
    items = await RequirementFeed(repository, tutor_id).load()
    return [RequirementOut(**item) for item in items]


@router.post("/{requirement_id}/responses", response_model=RequirementResponseOut)
async def respond_to_requirement(
    requirement_id: uuid.UUID,
    payload: RequirementResponseRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> RequirementResponseOut:
    tutor_id = require_scopes_or_403(principal, {"requirements:respond"})

    try:
        outcome = await ResponseCoordinator(repository).respond(
            str(requirement_id),
            tutor_id,
            payload.status,
            payload.message,
            payload.proposed_rate,
        )
    except RequirementNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PrimaryWriteFailedError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return RequirementResponseOut(
        requirement_id=outcome.requirement_id,
        tutor_id=outcome.tutor_id,
        status=outcome.status,
        outcome=outcome.outcome,
        detail=outcome.acknowledgement,
        warnings=[SideEffectWarningOut(step=failure.step, detail=failure.detail) for failure in outcome.failures],
    )
