from __future__ import annotations

import logging
from typing import Any

from tutordesk.core.auth import require_user_id
from tutordesk.services.repository import PostgresRepository, RepositoryError

logger = logging.getLogger(__name__)


class MessageValidationError(ValueError):
    """Raised when a message cannot be sent as given."""


async def send_message(
    repository: PostgresRepository,
    *,
    sender_id: str | None,
    receiver_id: str | None,
    content: str | None,
) -> dict[str, Any]:
    sender_id = require_user_id(sender_id)
    text = (content or "").strip()
    if not text:
        raise MessageValidationError("message content must not be empty")
    if not receiver_id or not receiver_id.strip():
        raise MessageValidationError("receiver_id is required")
    if receiver_id == sender_id:
        raise MessageValidationError("cannot send a message to yourself")

    message = await repository.insert_message(sender_id=sender_id, receiver_id=receiver_id, content=text)

    try:
        sender = await repository.get_profile(sender_id)
        sender_name = (sender or {}).get("full_name") or "a tutor"
        await repository.insert_notification(
            user_id=receiver_id,
            type="message",
            title="New Message",
            message=f"You have a new message from {sender_name}.",
            data={"sender_id": sender_id},
        )
    except RepositoryError:
        logger.warning("message notification failed (message %s sent ok)", message.get("id"), exc_info=True)

    return message


async def load_conversation(
    repository: PostgresRepository,
    *,
    user_id: str | None,
    counterpart_id: str,
    limit: int = 50,
) -> list[dict[str, Any]]:
    user_id = require_user_id(user_id)
    try:
        messages = await repository.call_get_conversation_messages(
            user_id=user_id,
            counterpart_id=counterpart_id,
            limit=limit,
        )
    except RepositoryError:
        logger.info("get_conversation_messages rpc failed; falling back to direct query", exc_info=True)
        messages = await repository.list_conversation_messages(
            user_id=user_id,
            counterpart_id=counterpart_id,
            limit=limit,
        )

    return sorted(messages, key=lambda message: _sort_key(message.get("created_at")))


async def mark_conversation_read(
    repository: PostgresRepository,
    *,
    user_id: str | None,
    counterpart_id: str,
) -> int:
    user_id = require_user_id(user_id)
    await repository.call_mark_messages_as_read(sender_id=counterpart_id, receiver_id=user_id)
    return await repository.mark_message_notifications_read(user_id=user_id, sender_id=counterpart_id)


async def list_interested_students(
    repository: PostgresRepository,
    *,
    tutor_id: str | None,
) -> list[dict[str, Any]]:
    """Students who expressed interest in the tutor, newest interest first."""
    tutor_id = require_user_id(tutor_id)
    try:
        notifications = await repository.list_notifications(user_id=tutor_id, types=["interest"])
    except RepositoryError:
        logger.warning("interest notifications unavailable for tutor=%s", tutor_id, exc_info=True)
        return []

    latest_interest: dict[str, Any] = {}
    for notification in notifications:
        student_id = (notification.get("data") or {}).get("student_id")
        if student_id and student_id not in latest_interest:
            latest_interest[student_id] = notification.get("created_at")

    if not latest_interest:
        return []

    try:
        profiles = await repository.list_profiles_by_user_ids(list(latest_interest))
    except RepositoryError:
        logger.warning("student profiles unavailable for tutor=%s", tutor_id, exc_info=True)
        return []

    by_user_id = {profile["user_id"]: profile for profile in profiles}
    students: list[dict[str, Any]] = []
    for student_id, interest_date in latest_interest.items():
        profile = by_user_id.get(student_id)
        if profile is None:
            continue
        students.append(
            {
                "id": student_id,
                "name": profile.get("full_name") or "Student",
                "profile_photo_url": profile.get("profile_photo_url") or "",
                "city": profile.get("city") or "",
                "area": profile.get("area") or "",
                "interest_date": interest_date,
            }
        )
    return students


def _sort_key(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
