import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from tutordesk.core.config import Settings, get_settings
from tutordesk.core.security import get_human_principal, require_scopes_or_403
from tutordesk.schemas.messages import MarkReadOut, MessageCreateRequest, MessageOut, UnreadCountOut
from tutordesk.services.messaging import (
    MessageValidationError,
    load_conversation,
    mark_conversation_read,
    send_message,
)
from tutordesk.services.repository import (
    RepositoryUnavailableError,
    RepositoryWriteError,
    get_repository,
)

router = APIRouter()


@router.get("/unread-count", response_model=UnreadCountOut)
async def get_unread_count(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> UnreadCountOut:
    user_id = require_scopes_or_403(principal, {"messages:read"})

    try:
        unread = await repository.count_unread_messages(user_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return UnreadCountOut(unread=unread)


@router.get("/{counterpart_id}", response_model=list[MessageOut])
async def get_conversation(
    counterpart_id: uuid.UUID,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
    limit: int | None = Query(default=None, ge=1, le=200),
) -> list[MessageOut]:
    user_id = require_scopes_or_403(principal, {"messages:read"})

    try:
        messages = await load_conversation(
            repository,
            user_id=user_id,
            counterpart_id=str(counterpart_id),
            limit=limit or settings.conversation_page_size,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [MessageOut(**message) for message in messages]


@router.post("", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def post_message(
    payload: MessageCreateRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MessageOut:
    sender_id = require_scopes_or_403(principal, {"messages:write"})

    try:
        message = await send_message(
            repository,
            sender_id=sender_id,
            receiver_id=str(payload.receiver_id),
            content=payload.content,
        )
    except MessageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryWriteError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="failed to send message") from exc

    return MessageOut(**message)


@router.post("/{counterpart_id}/read", response_model=MarkReadOut)
async def mark_read(
    counterpart_id: uuid.UUID,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MarkReadOut:
    user_id = require_scopes_or_403(principal, {"messages:write"})

    try:
        cleared = await mark_conversation_read(repository, user_id=user_id, counterpart_id=str(counterpart_id))
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryWriteError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="failed to mark messages read") from exc

    return MarkReadOut(counterpart_id=str(counterpart_id), notifications_cleared=cleared)
