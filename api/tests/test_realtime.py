from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from conftest import STUDENT_ID, TUTOR_ID, FakeTutorRepository
from tutordesk.services.notification_feed import NotificationFeed
from tutordesk.services.realtime import (
    PostgresChangeListener,
    RealtimeHub,
    RowChange,
    column_equals,
    parse_change_payload,
)
from tutordesk.services.repository import RepositoryUnavailableError
from tutordesk.services.requirements_feed import RequirementFeed


class FakeListenConnection:
    def __init__(self) -> None:
        self.listeners: list[Any] = []
        self.termination_listeners: list[Any] = []
        self.closed = False

    async def add_listener(self, channel: str, callback: Any) -> None:
        self.listeners.append((channel, callback))

    async def remove_listener(self, channel: str, callback: Any) -> None:
        self.listeners.remove((channel, callback))

    def add_termination_listener(self, callback: Any) -> None:
        self.termination_listeners.append(callback)

    def remove_termination_listener(self, callback: Any) -> None:
        if callback in self.termination_listeners:
            self.termination_listeners.remove(callback)

    async def close(self) -> None:
        self.closed = True

    def terminate(self) -> None:
        for callback in list(self.termination_listeners):
            callback(self)


class FakeListenRepository:
    def __init__(self, failures: int = 0) -> None:
        self.connections: list[FakeListenConnection] = []
        self.attempts = 0
        self.failures = failures

    async def listen(self, channel: str) -> FakeListenConnection:
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise RepositoryUnavailableError("database unavailable")
        connection = FakeListenConnection()
        self.connections.append(connection)
        return connection


def test_dispatch_honours_table_event_and_predicate() -> None:
    hub = RealtimeHub()
    seen: list[str] = []

    async def on_change(change: RowChange) -> None:
        seen.append(change.record["id"])

    hub.subscribe("notifications", "INSERT", column_equals("user_id", "u-1"), on_change)

    async def scenario() -> list[int]:
        return [
            await hub.dispatch(RowChange("notifications", "INSERT", {"id": "a", "user_id": "u-1"})),
            await hub.dispatch(RowChange("notifications", "INSERT", {"id": "b", "user_id": "u-2"})),
            await hub.dispatch(RowChange("notifications", "UPDATE", {"id": "c", "user_id": "u-1"})),
            await hub.dispatch(RowChange("messages", "INSERT", {"id": "d", "user_id": "u-1"})),
        ]

    assert asyncio.run(scenario()) == [1, 0, 0, 0]
    assert seen == ["a"]


def test_wildcard_subscription_sees_deletes_through_old_record() -> None:
    hub = RealtimeHub()
    events: list[str] = []
    hub.subscribe("messages", "*", column_equals("receiver_id", "u-1"), lambda change: events.append(change.event_type))

    async def scenario() -> None:
        await hub.dispatch(RowChange("messages", "INSERT", {"receiver_id": "u-1"}))
        await hub.dispatch(RowChange("messages", "UPDATE", {"receiver_id": "u-1"}))
        await hub.dispatch(RowChange("messages", "DELETE", {}, {"receiver_id": "u-1"}))

    asyncio.run(scenario())

    assert events == ["INSERT", "UPDATE", "DELETE"]


def test_failing_callback_does_not_block_other_subscribers() -> None:
    hub = RealtimeHub()
    delivered: list[str] = []

    async def broken(_: RowChange) -> None:
        raise RuntimeError("boom")

    async def healthy(change: RowChange) -> None:
        delivered.append(change.table)

    hub.subscribe("requirements", "INSERT", None, broken)
    hub.subscribe("requirements", "INSERT", None, healthy)

    count = asyncio.run(hub.dispatch(RowChange("requirements", "INSERT", {})))

    assert count == 1
    assert delivered == ["requirements"]


def test_unsubscribe_is_idempotent() -> None:
    hub = RealtimeHub()
    subscription = hub.subscribe("requirements", ["INSERT", "update"], None, lambda change: None)
    assert subscription.event_types == frozenset({"INSERT", "UPDATE"})

    hub.unsubscribe(subscription)
    hub.unsubscribe(subscription)

    assert hub.subscription_count == 0


def test_subscribe_rejects_unknown_event_types() -> None:
    with pytest.raises(ValueError):
        RealtimeHub().subscribe("requirements", "TRUNCATE", None, lambda change: None)


def test_parse_change_payload_reads_trigger_json() -> None:
    payload = json.dumps(
        {
            "table": "notifications",
            "type": "insert",
            "record": {"id": "n-1", "user_id": "u-1"},
            "old_record": None,
        }
    )

    change = parse_change_payload(payload)

    assert change == RowChange("notifications", "INSERT", {"id": "n-1", "user_id": "u-1"}, {})


@pytest.mark.parametrize(
    "payload",
    [None, "", "not json", "[]", json.dumps({"table": "t"}), json.dumps({"table": "t", "type": "TRUNCATE"})],
)
def test_parse_change_payload_rejects_malformed_input(payload: str | None) -> None:
    assert parse_change_payload(payload) is None


def test_listener_reconnects_after_connection_loss() -> None:
    repository = FakeListenRepository()
    listener = PostgresChangeListener(repository, RealtimeHub(), "tutordesk_changes", reconnect_initial_seconds=0)  # type: ignore[arg-type]

    async def scenario() -> None:
        await listener.start()
        repository.failures = 2
        repository.connections[0].terminate()
        for _ in range(20):
            await asyncio.sleep(0)
            if len(repository.connections) == 2:
                break
        await listener.stop()

    asyncio.run(scenario())

    assert repository.attempts == 4
    assert len(repository.connections) == 2
    reconnected = repository.connections[1]
    assert reconnected.closed is True
    assert reconnected.termination_listeners == []


def test_listener_does_not_reconnect_after_stop() -> None:
    repository = FakeListenRepository()
    listener = PostgresChangeListener(repository, RealtimeHub(), "tutordesk_changes", reconnect_initial_seconds=0)  # type: ignore[arg-type]

    async def scenario() -> None:
        await listener.start()
        connection = repository.connections[0]
        await listener.stop()
        connection.terminate()
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert repository.attempts == 1


def test_trimmed_trigger_payloads_drive_the_feeds(fake_repo: FakeTutorRepository, hub: RealtimeHub) -> None:
    events: list[dict[str, Any]] = []

    async def sink(event: dict[str, Any]) -> None:
        events.append(event)

    requirements = RequirementFeed(fake_repo, TUTOR_ID, on_event=sink)
    notifications = NotificationFeed(fake_repo, TUTOR_ID, on_event=sink)
    created = fake_repo.add_requirement(subject="Physics", location="Pune", description="x" * 20000)
    payloads = [
        {
            "table": "requirements",
            "type": "INSERT",
            "record": {"id": created["id"], "student_id": STUDENT_ID, "subject": "Physics", "status": "active"},
            "old_record": None,
        },
        {
            "table": "notifications",
            "type": "INSERT",
            "record": {
                "id": "n-1",
                "user_id": TUTOR_ID,
                "type": "interest",
                "title": "New Student Interest",
                "message": "अ" * 280,
                "data": {"student_id": STUDENT_ID},
                "is_read": False,
                "created_at": "2026-05-01T10:00:00+00:00",
            },
            "old_record": None,
        },
        {
            "table": "messages",
            "type": "INSERT",
            "record": {"id": "m-1", "sender_id": STUDENT_ID, "receiver_id": TUTOR_ID, "read": False},
            "old_record": None,
        },
    ]

    async def scenario() -> list[int]:
        requirements.start(hub)
        notifications.start(hub)
        fake_repo.add_message(STUDENT_ID, TUTOR_ID, "नमस्ते " * 600)
        delivered = []
        for payload in payloads:
            change = parse_change_payload(json.dumps(payload))
            assert change is not None
            delivered.append(await hub.dispatch(change))
        return delivered

    assert asyncio.run(scenario()) == [1, 1, 1]
    assert [item["id"] for item in requirements.items] == [created["id"]]
    assert notifications.notifications[0]["message"] == "अ" * 280
    assert notifications.unread_count == 1
    assert [event["title"] for event in events if event["type"] == "alert"] == [
        "New Requirement Available!",
        "New Student Interest!",
    ]
