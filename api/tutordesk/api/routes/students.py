from fastapi import APIRouter, Depends

from tutordesk.core.security import get_human_principal, require_scopes_or_403
from tutordesk.schemas.messages import InterestedStudentOut
from tutordesk.services.messaging import list_interested_students
from tutordesk.services.repository import get_repository

router = APIRouter()


@router.get("", response_model=list[InterestedStudentOut])
async def get_interested_students(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> list[InterestedStudentOut]:
    tutor_id = require_scopes_or_403(principal, {"requirements:read"})

    students = await list_interested_students(repository, tutor_id=tutor_id)
    return [InterestedStudentOut(**student) for student in students]
