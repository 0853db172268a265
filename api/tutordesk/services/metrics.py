from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from tutordesk.core.auth import require_user_id
from tutordesk.services.repository import PostgresRepository, RepositoryError

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIME_HOURS = 24
MAX_RESPONSE_GAP_HOURS = 168.0


def compute_response_time_hours(messages: list[dict[str, Any]], tutor_id: str) -> tuple[int, int]:
    """Average hours between a student's message and the tutor's next reply.

    Returns ``(hours, pairs)``. Gaps of a week or more are outliers and are
    skipped; with no usable pairs the default of 24 hours is returned.
    """
    conversations: dict[str, list[tuple[datetime, str]]] = defaultdict(list)
    for message in messages:
        sender_id = message.get("sender_id")
        receiver_id = message.get("receiver_id")
        sent_at = _parse_timestamp(message.get("created_at"))
        if sent_at is None or not sender_id or not receiver_id:
            continue
        if sender_id == tutor_id:
            conversations[receiver_id].append((sent_at, sender_id))
        elif receiver_id == tutor_id:
            conversations[sender_id].append((sent_at, sender_id))

    total_hours = 0.0
    pairs = 0
    for counterpart_id, timeline in conversations.items():
        timeline.sort(key=lambda item: item[0])
        for (asked_at, asked_by), (answered_at, answered_by) in zip(timeline, timeline[1:]):
            if asked_by != counterpart_id or answered_by != tutor_id:
                continue
            gap_hours = (answered_at - asked_at).total_seconds() / 3600.0
            if 0 < gap_hours < MAX_RESPONSE_GAP_HOURS:
                total_hours += gap_hours
                pairs += 1

    if pairs == 0:
        return DEFAULT_RESPONSE_TIME_HOURS, 0
    return int(math.floor(total_hours / pairs + 0.5)), pairs


async def measure_response_time(
    repository: PostgresRepository,
    *,
    tutor_id: str | None,
    sample_size: int = 100,
) -> tuple[int, int]:
    tutor_id = require_user_id(tutor_id)
    try:
        messages = await repository.list_recent_messages(user_id=tutor_id, limit=sample_size)
    except RepositoryError:
        logger.warning("response time messages unavailable for tutor=%s", tutor_id, exc_info=True)
        messages = []
    return compute_response_time_hours(messages, tutor_id)


async def recalculate_response_time(
    repository: PostgresRepository,
    *,
    tutor_id: str | None,
    sample_size: int = 100,
) -> dict[str, Any]:
    """Measure the tutor's response time and store it on the tutor profile (best effort)."""
    tutor_id = require_user_id(tutor_id)
    hours, pairs = await measure_response_time(repository, tutor_id=tutor_id, sample_size=sample_size)

    persisted = True
    try:
        await repository.update_tutor_response_time(user_id=tutor_id, response_time_hours=hours)
    except RepositoryError:
        logger.warning("response time update failed for tutor=%s", tutor_id, exc_info=True)
        persisted = False

    return {"response_time_hours": hours, "sampled_pairs": pairs, "persisted": persisted}


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
