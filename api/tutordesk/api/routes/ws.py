import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from tutordesk.core.config import Settings, get_settings
from tutordesk.core.security import resolve_principal
from tutordesk.services.dashboard import DashboardSession
from tutordesk.services.realtime import RealtimeHub, get_realtime_hub
from tutordesk.services.repository import get_repository

router = APIRouter()
logger = logging.getLogger(__name__)

DASHBOARD_SCOPES = {"requirements:read", "requirements:respond", "notifications:read"}


@router.websocket("/dashboard")
async def dashboard_socket(
    websocket: WebSocket,
    access_token: str | None = None,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> None:
    try:
        principal = await resolve_principal(access_token, settings)
        principal.require_scopes(DASHBOARD_SCOPES)
    except (HTTPException, PermissionError) as exc:
        logger.info("dashboard socket rejected: %s", getattr(exc, "detail", exc))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = DashboardSession(
        repository=repository,
        hub=hub,
        tutor_id=principal.actor_id,
        notification_limit=settings.notification_feed_limit,
    )
    sender = asyncio.create_task(_forward_events(websocket, session))
    try:
        await session.open()
        while True:
            raw = await websocket.receive_text()
            payload = _decode(raw)
            if payload is None:
                await session.publish({"type": "error", "detail": "expected a JSON object"})
                continue
            await session.handle(payload)
    except WebSocketDisconnect:
        logger.info("dashboard socket disconnected tutor=%s", session.tutor_id)
    finally:
        await session.close()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


async def _forward_events(websocket: WebSocket, session: DashboardSession) -> None:
    while True:
        event = await session.events.get()
        await websocket.send_json(event)


def _decode(raw: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None
