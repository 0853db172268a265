from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi.encoders import jsonable_encoder

from tutordesk.core.auth import require_user_id
from tutordesk.services.notification_feed import NotificationFeed
from tutordesk.services.realtime import RealtimeHub
from tutordesk.services.repository import PostgresRepository
from tutordesk.services.requirements_feed import RequirementFeed
from tutordesk.services.responses import (
    PrimaryWriteFailedError,
    RequirementNotFoundError,
    ResponseCoordinator,
)
from tutordesk.services.view_state import (
    CloseDialog,
    DashboardHome,
    InvalidViewAction,
    RequirementResponseView,
    ViewState,
    parse_view_action,
    reduce_view,
    view_to_dict,
)

logger = logging.getLogger(__name__)


class DashboardSession:
    """One live dashboard for one tutor.

    Owns exactly one requirement feed, one notification feed and the response
    coordinator, and every realtime subscription they hold. ``close()`` must
    run when the client goes away or the active user changes.
    """

    def __init__(
        self,
        *,
        repository: PostgresRepository,
        hub: RealtimeHub,
        tutor_id: str | None,
        notification_limit: int = 5,
    ) -> None:
        self.tutor_id = require_user_id(tutor_id)
        self.hub = hub
        self.events: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.view: ViewState = DashboardHome()
        self.requirements = RequirementFeed(repository, self.tutor_id, on_event=self.publish)
        self.notifications = NotificationFeed(
            repository,
            self.tutor_id,
            limit=notification_limit,
            on_event=self.publish,
        )
        self.responses = ResponseCoordinator(repository, on_committed=self.requirements.reload)
        self.opened = False

    async def open(self) -> None:
        if self.opened:
            return
        self.opened = True
        # Subscribe first so rows inserted while the snapshot loads still arrive.
        self.requirements.start(self.hub)
        self.notifications.start(self.hub)
        await self.requirements.load()
        await self.notifications.load()
        await self.notifications.refresh_unread_count()
        await self.notifications.refresh_requirement_badge()
        await self.publish({"type": "view", **view_to_dict(self.view)})
        logger.info("dashboard session opened tutor=%s", self.tutor_id)

    async def close(self) -> None:
        if not self.opened:
            return
        self.opened = False
        self.requirements.stop()
        self.notifications.stop()
        logger.info("dashboard session closed tutor=%s", self.tutor_id)

    async def publish(self, event: dict[str, Any]) -> None:
        await self.events.put(jsonable_encoder(event))

    async def handle(self, payload: dict[str, Any]) -> None:
        action = payload.get("action")
        if action == "refresh":
            await self.requirements.load()
            await self.notifications.load()
            await self.notifications.refresh_unread_count()
            return
        if action == "respond":
            await self._respond(payload)
            return

        try:
            self.view = reduce_view(self.view, parse_view_action(payload))
        except InvalidViewAction as exc:
            await self.publish({"type": "error", "detail": str(exc)})
            return
        await self.publish({"type": "view", **view_to_dict(self.view)})

    async def _respond(self, payload: dict[str, Any]) -> None:
        requirement_id = payload.get("requirement_id")
        status = payload.get("status")
        if not isinstance(requirement_id, str) or status not in {"interested", "not_interested"}:
            await self.publish({"type": "error", "detail": "respond requires requirement_id and status"})
            return

        message = payload.get("message")
        known = next((item for item in self.requirements.items if item.get("id") == requirement_id), None)
        try:
            outcome = await self.responses.respond(
                requirement_id,
                self.tutor_id,
                status,
                message if isinstance(message, str) else None,
                _as_rate(payload.get("proposed_rate")),
                requirement=known,
            )
        except RequirementNotFoundError as exc:
            await self.publish({"type": "error", "detail": str(exc), "retryable": False})
            return
        except PrimaryWriteFailedError as exc:
            await self.publish({"type": "error", "detail": str(exc), "retryable": True})
            return

        if isinstance(self.view, RequirementResponseView):
            self.view = reduce_view(self.view, CloseDialog())
            await self.publish({"type": "view", **view_to_dict(self.view)})
        await self.publish(
            {
                "type": "response_recorded",
                "requirement_id": outcome.requirement_id,
                "status": outcome.status,
                "outcome": outcome.outcome,
                "detail": outcome.acknowledgement,
            }
        )


def _as_rate(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    return rate if rate >= 0 else None
