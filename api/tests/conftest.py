from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

import tutordesk.core.security as security
from tutordesk.core.config import get_settings
from tutordesk.main import app
from tutordesk.services.realtime import RealtimeHub, get_realtime_hub
from tutordesk.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryWriteError,
    get_repository,
)

TUTOR_ID = "11111111-1111-1111-1111-111111111111"
STUDENT_ID = "22222222-2222-2222-2222-222222222222"
OTHER_STUDENT_ID = "44444444-4444-4444-4444-444444444444"

_WRITE_METHODS = {
    "upsert_requirement_match",
    "insert_message",
    "insert_notification",
    "call_mark_messages_as_read",
    "mark_message_notifications_read",
    "update_tutor_response_time",
}


class FakeTutorRepository:
    """In-memory stand-in for PostgresRepository with per-method failure injection."""

    def __init__(self) -> None:
        self.profiles: dict[str, dict[str, Any]] = {}
        self.tutor_profiles: dict[str, dict[str, Any]] = {}
        self.requirements: list[dict[str, Any]] = []
        self.matches: dict[tuple[str, str], dict[str, Any]] = {}
        self.messages: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = []
        self.calls: list[str] = []
        self.failing: set[str] = set()
        self._clock = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def fail(self, *methods: str) -> None:
        self.failing.update(methods)

    def heal(self) -> None:
        self.failing.clear()

    def add_profile(self, user_id: str, *, role: str = "student", **fields: Any) -> dict[str, Any]:
        profile = {
            "user_id": user_id,
            "full_name": fields.get("full_name"),
            "profile_photo_url": fields.get("profile_photo_url"),
            "city": fields.get("city"),
            "area": fields.get("area"),
            "role": role,
        }
        self.profiles[user_id] = profile
        return profile

    def add_tutor(self, user_id: str, *, subjects: list[str], city: str | None = None, area: str | None = None) -> None:
        self.add_profile(user_id, role="tutor", full_name="Asha Tutor", city=city, area=area)
        self.tutor_profiles[user_id] = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "subjects": list(subjects),
            "verified": True,
            "rating": 4.5,
            "total_reviews": 12,
            "profile_completion_percentage": 80,
            "response_time_hours": None,
        }

    def add_requirement(self, *, subject: str | None, location: str | None, student_id: str = STUDENT_ID, **fields: Any) -> dict[str, Any]:
        requirement = {
            "id": fields.get("id") or str(uuid.uuid4()),
            "student_id": student_id,
            "subject": subject,
            "location": location,
            "description": fields.get("description"),
            "category": fields.get("category"),
            "budget_range": fields.get("budget_range"),
            "preferred_time": None,
            "preferred_teaching_mode": None,
            "urgency": None,
            "status": fields.get("status", "active"),
            "created_at": self._tick(),
        }
        self.requirements.append(requirement)
        return requirement

    def add_notification(self, user_id: str, type: str, *, data: dict[str, Any] | None = None, message: str = "", is_read: bool = False) -> dict[str, Any]:
        notification = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "type": type,
            "title": type.replace("_", " ").title(),
            "message": message,
            "data": dict(data or {}),
            "is_read": is_read,
            "created_at": self._tick(),
        }
        self.notifications.append(notification)
        return notification

    def add_message(self, sender_id: str, receiver_id: str, content: str, *, at: datetime | None = None, read: bool = False) -> dict[str, Any]:
        message = {
            "id": str(uuid.uuid4()),
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "message_type": "text",
            "related_requirement_id": None,
            "read": read,
            "created_at": at or self._tick(),
        }
        self.messages.append(message)
        return message

    async def close(self) -> None:
        return None

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        self._enter("get_profile")
        profile = self.profiles.get(user_id)
        return dict(profile) if profile else None

    async def get_tutor_profile(self, user_id: str) -> dict[str, Any] | None:
        self._enter("get_tutor_profile")
        profile = self.tutor_profiles.get(user_id)
        return dict(profile) if profile else None

    async def list_profiles_by_user_ids(self, user_ids: list[str]) -> list[dict[str, Any]]:
        self._enter("list_profiles_by_user_ids")
        return [
            {key: value for key, value in self.profiles[user_id].items() if key != "role"}
            for user_id in user_ids
            if user_id in self.profiles
        ]

    async def list_active_requirements(self) -> list[dict[str, Any]]:
        self._enter("list_active_requirements")
        active = [dict(req) for req in self.requirements if req["status"] == "active"]
        return sorted(active, key=lambda req: req["created_at"], reverse=True)

    async def get_requirement(self, requirement_id: str) -> dict[str, Any] | None:
        self._enter("get_requirement")
        for requirement in self.requirements:
            if requirement["id"] == requirement_id:
                return dict(requirement)
        return None

    async def list_tutor_matches(self, *, tutor_id: str, requirement_ids: list[str]) -> list[dict[str, Any]]:
        self._enter("list_tutor_matches")
        return [
            {"requirement_id": match["requirement_id"], "status": match["status"]}
            for (requirement_id, match_tutor_id), match in self.matches.items()
            if match_tutor_id == tutor_id and requirement_id in requirement_ids
        ]

    async def upsert_requirement_match(
        self,
        *,
        requirement_id: str,
        tutor_id: str,
        status: str,
        response_message: str | None,
        proposed_rate: float | None,
    ) -> dict[str, Any]:
        self._enter("upsert_requirement_match")
        if status not in {"interested", "not_interested"}:
            raise RepositoryWriteError(f"invalid match status: {status}")
        match = {
            "requirement_id": requirement_id,
            "tutor_id": tutor_id,
            "status": status,
            "response_message": response_message,
            "proposed_rate": proposed_rate,
            "updated_at": self._tick(),
        }
        self.matches[(requirement_id, tutor_id)] = match
        return dict(match)

    async def insert_message(
        self,
        *,
        sender_id: str,
        receiver_id: str,
        content: str,
        message_type: str = "text",
        related_requirement_id: str | None = None,
    ) -> dict[str, Any]:
        self._enter("insert_message")
        message = self.add_message(sender_id, receiver_id, content)
        message["message_type"] = message_type
        message["related_requirement_id"] = related_requirement_id
        return dict(message)

    async def insert_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        self._enter("insert_notification")
        notification = self.add_notification(user_id, type, data=data, message=message)
        notification["title"] = title
        return dict(notification)

    async def list_notifications(
        self,
        *,
        user_id: str,
        types: list[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._enter("list_notifications")
        rows = [
            dict(row)
            for row in self.notifications
            if row["user_id"] == user_id and (not types or row["type"] in types)
        ]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return rows[:limit] if limit is not None else rows

    async def count_unread_messages(self, receiver_id: str) -> int:
        self._enter("count_unread_messages")
        return sum(1 for row in self.messages if row["receiver_id"] == receiver_id and not row["read"])

    async def count_unread_notifications(self, *, user_id: str, type: str) -> int:
        self._enter("count_unread_notifications")
        return sum(
            1
            for row in self.notifications
            if row["user_id"] == user_id and row["type"] == type and not row["is_read"]
        )

    async def call_get_conversation_messages(self, *, user_id: str, counterpart_id: str, limit: int) -> list[dict[str, Any]]:
        self._enter("call_get_conversation_messages")
        return self._conversation(user_id, counterpart_id, limit)

    async def list_conversation_messages(self, *, user_id: str, counterpart_id: str, limit: int) -> list[dict[str, Any]]:
        self._enter("list_conversation_messages")
        return self._conversation(user_id, counterpart_id, limit)

    async def list_recent_messages(self, *, user_id: str, limit: int) -> list[dict[str, Any]]:
        self._enter("list_recent_messages")
        rows = [dict(row) for row in self.messages if user_id in {row["sender_id"], row["receiver_id"]}]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return rows[:limit]

    async def call_mark_messages_as_read(self, *, sender_id: str, receiver_id: str) -> None:
        self._enter("call_mark_messages_as_read")
        for row in self.messages:
            if row["sender_id"] == sender_id and row["receiver_id"] == receiver_id:
                row["read"] = True

    async def mark_message_notifications_read(self, *, user_id: str, sender_id: str) -> int:
        self._enter("mark_message_notifications_read")
        cleared = 0
        for row in self.notifications:
            if (
                row["user_id"] == user_id
                and row["type"] == "message"
                and row["data"].get("sender_id") == sender_id
                and not row["is_read"]
            ):
                row["is_read"] = True
                cleared += 1
        return cleared

    async def update_tutor_response_time(self, *, user_id: str, response_time_hours: int) -> None:
        self._enter("update_tutor_response_time")
        profile = self.tutor_profiles.get(user_id)
        if profile is None:
            raise RepositoryNotFoundError("tutor profile not found")
        profile["response_time_hours"] = int(response_time_hours)

    def _conversation(self, user_id: str, counterpart_id: str, limit: int) -> list[dict[str, Any]]:
        pair = {user_id, counterpart_id}
        rows = [dict(row) for row in self.messages if {row["sender_id"], row["receiver_id"]} == pair]
        rows.sort(key=lambda row: row["created_at"])
        return rows[-limit:]

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        if method not in self.failing:
            return
        if method in _WRITE_METHODS:
            raise RepositoryWriteError(f"{method} failed")
        raise RepositoryUnavailableError(f"{method} unavailable")

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock


@pytest.fixture
def fake_repo() -> FakeTutorRepository:
    repo = FakeTutorRepository()
    repo.add_tutor(TUTOR_ID, subjects=["Math", "Physics"], city="Pune", area="Kothrud")
    repo.add_profile(STUDENT_ID, full_name="Riya Student", city="Pune", area="Kothrud")
    repo.add_profile(OTHER_STUDENT_ID, full_name="Kabir Student", city="Mumbai", area="Andheri")
    return repo


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
def api_client(fake_repo: FakeTutorRepository, hub: RealtimeHub) -> Iterator[TestClient]:
    os.environ["TD_SUPABASE_URL"] = "https://example.supabase.co"
    os.environ["TD_SUPABASE_ANON_KEY"] = "anon-key"
    get_settings.cache_clear()

    app.dependency_overrides[get_repository] = lambda: fake_repo
    app.dependency_overrides[get_realtime_hub] = lambda: hub

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    os.environ.pop("TD_SUPABASE_URL", None)
    os.environ.pop("TD_SUPABASE_ANON_KEY", None)
    get_settings.cache_clear()


def mock_supabase_user(monkeypatch: pytest.MonkeyPatch, user: dict[str, Any]) -> None:
    async def _fake_fetch(**_: Any) -> dict[str, Any]:
        return user

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)


def as_tutor(monkeypatch: pytest.MonkeyPatch, user_id: str = TUTOR_ID) -> dict[str, str]:
    mock_supabase_user(monkeypatch, {"id": user_id, "app_metadata": {"role": "tutor"}})
    return {"Authorization": "Bearer token"}


def as_student(monkeypatch: pytest.MonkeyPatch, user_id: str = STUDENT_ID) -> dict[str, str]:
    mock_supabase_user(monkeypatch, {"id": user_id, "user_metadata": {"role": "student"}})
    return {"Authorization": "Bearer token"}
