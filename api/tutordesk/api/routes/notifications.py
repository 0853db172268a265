from fastapi import APIRouter, Depends

from tutordesk.core.config import Settings, get_settings
from tutordesk.core.security import get_human_principal, require_scopes_or_403
from tutordesk.schemas.notifications import NotificationFeedOut, NotificationOut
from tutordesk.services.notification_feed import NotificationFeed
from tutordesk.services.repository import get_repository

router = APIRouter()


@router.get("", response_model=NotificationFeedOut)
async def get_notification_feed(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> NotificationFeedOut:
    user_id = require_scopes_or_403(principal, {"notifications:read"})

    feed = NotificationFeed(repository, user_id, limit=settings.notification_feed_limit)
    notifications = await feed.load()
    unread = await feed.refresh_unread_count()
    badge = await feed.refresh_requirement_badge()
    return NotificationFeedOut(
        notifications=[NotificationOut(**item) for item in notifications],
        unread_messages=unread,
        requirement_badge=badge,
    )
