from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tutordesk.core.auth import require_user_id
from tutordesk.services.realtime import RealtimeHub, RowChange, Subscription, column_equals
from tutordesk.services.repository import PostgresRepository, RepositoryError

logger = logging.getLogger(__name__)

FeedEventSink = Callable[[dict[str, Any]], Awaitable[None]]

FEED_TYPES = ("interest",)
LIVE_TYPES = frozenset({"interest", "message"})
ALERT_TITLES = {
    "interest": "New Student Interest!",
    "message": "New Message",
}


class NotificationFeed:
    """Capped list of recent interest/message notifications plus the unread-message badge."""

    def __init__(
        self,
        repository: PostgresRepository,
        user_id: str | None,
        *,
        limit: int = 5,
        on_event: FeedEventSink | None = None,
    ) -> None:
        self.repository = repository
        self.user_id = require_user_id(user_id)
        self.limit = max(1, limit)
        self.on_event = on_event
        self.notifications: list[dict[str, Any]] = []
        self.unread_count = 0
        self.requirement_badge = 0
        self._hub: RealtimeHub | None = None
        self._subscriptions: list[Subscription] = []

    async def load(self) -> list[dict[str, Any]]:
        try:
            rows = await self.repository.list_notifications(
                user_id=self.user_id,
                types=list(FEED_TYPES),
                limit=self.limit,
            )
        except RepositoryError:
            logger.warning("notification feed load failed for user=%s", self.user_id, exc_info=True)
            rows = []

        self.notifications = [await self._with_student_profile(row) for row in rows]
        await self._emit({"type": "notifications", "items": self.notifications})
        return self.notifications

    async def refresh_unread_count(self) -> int:
        try:
            self.unread_count = await self.repository.count_unread_messages(self.user_id)
        except RepositoryError:
            logger.warning("unread message count failed for user=%s", self.user_id, exc_info=True)
            return self.unread_count

        await self._emit({"type": "unread_count", "count": self.unread_count})
        return self.unread_count

    async def refresh_requirement_badge(self) -> int:
        try:
            self.requirement_badge = await self.repository.count_unread_notifications(
                user_id=self.user_id,
                type="new_requirement",
            )
        except RepositoryError:
            logger.warning("requirement badge count failed for user=%s", self.user_id, exc_info=True)
            return self.requirement_badge

        await self._emit({"type": "requirement_badge", "count": self.requirement_badge})
        return self.requirement_badge

    def start(self, hub: RealtimeHub) -> None:
        if self._subscriptions:
            return
        self._hub = hub
        self._subscriptions = [
            hub.subscribe(
                "notifications",
                "INSERT",
                column_equals("user_id", self.user_id),
                self.handle_notification_insert,
            ),
            hub.subscribe(
                "messages",
                "*",
                column_equals("receiver_id", self.user_id),
                self.handle_message_change,
            ),
        ]

    def stop(self) -> None:
        if self._hub is not None:
            for subscription in self._subscriptions:
                self._hub.unsubscribe(subscription)
        self._subscriptions = []
        self._hub = None

    async def handle_notification_insert(self, change: RowChange) -> None:
        notification = change.record
        kind = notification.get("type")
        if kind == "new_requirement":
            await self.refresh_requirement_badge()
            return
        if kind not in LIVE_TYPES:
            return

        self.notifications = [notification, *self.notifications][: self.limit]
        await self._emit({"type": "notifications", "items": self.notifications})
        await self._emit(
            {
                "type": "alert",
                "title": ALERT_TITLES[kind],
                "description": notification.get("message") or "",
            }
        )
        if kind == "message":
            await self.refresh_unread_count()

    async def handle_message_change(self, change: RowChange) -> None:
        # Re-query instead of adjusting the counter so racing updates converge.
        await self.refresh_unread_count()

    async def _with_student_profile(self, notification: dict[str, Any]) -> dict[str, Any]:
        data = notification.get("data") or {}
        student_id = data.get("student_id") or data.get("sender_id")
        if not student_id:
            return notification

        try:
            profile = await self.repository.get_profile(student_id)
        except RepositoryError:
            logger.warning("student lookup failed for notification=%s", notification.get("id"), exc_info=True)
            return notification
        if not profile:
            return notification

        return {
            **notification,
            "student_profile": {
                "id": profile["user_id"],
                "name": profile.get("full_name") or "Student",
                "profile_photo_url": profile.get("profile_photo_url") or "",
                "city": profile.get("city") or "",
                "area": profile.get("area") or "",
            },
        }

    async def _emit(self, event: dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            await self.on_event(event)
        except Exception:
            logger.exception("notification feed event sink failed type=%s", event.get("type"))
