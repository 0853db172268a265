from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from functools import lru_cache
from itertools import count
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from tutordesk.services.repository import PostgresRepository, RepositoryUnavailableError

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({"INSERT", "UPDATE", "DELETE"})
_LISTEN_ERRORS = (RepositoryUnavailableError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


@dataclass(frozen=True, slots=True)
class RowChange:
    table: str
    event_type: str
    record: dict[str, Any] = field(default_factory=dict)
    old_record: dict[str, Any] = field(default_factory=dict)


RowPredicate = Callable[[RowChange], bool]
ChangeCallback = Callable[[RowChange], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class Subscription:
    id: int
    table: str
    event_types: frozenset[str]
    predicate: RowPredicate | None
    callback: ChangeCallback

    def accepts(self, change: RowChange) -> bool:
        if change.table != self.table or change.event_type not in self.event_types:
            return False
        return self.predicate is None or self.predicate(change)


def column_equals(column: str, value: Any) -> RowPredicate:
    """Equivalent of a Supabase ``column=eq.value`` realtime filter."""

    expected = str(value)

    def predicate(change: RowChange) -> bool:
        row = change.record or change.old_record
        current = row.get(column)
        return current is not None and str(current) == expected

    return predicate


class RealtimeHub:
    """In-process fan-out of row changes to per-feed subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = count(1)

    def subscribe(
        self,
        table: str,
        event_types: Iterable[str] | str,
        predicate: RowPredicate | None,
        callback: ChangeCallback,
    ) -> Subscription:
        events = _normalize_event_types(event_types)
        subscription = Subscription(
            id=next(self._ids),
            table=table,
            event_types=events,
            predicate=predicate,
            callback=callback,
        )
        self._subscriptions[subscription.id] = subscription
        logger.debug("realtime subscribe id=%s table=%s events=%s", subscription.id, table, sorted(events))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.debug("realtime unsubscribe id=%s table=%s", subscription.id, subscription.table)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def dispatch(self, change: RowChange) -> int:
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.id not in self._subscriptions:
                continue
            try:
                if not subscription.accepts(change):
                    continue
                result = subscription.callback(change)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                logger.exception(
                    "realtime callback failed subscription=%s table=%s event=%s",
                    subscription.id,
                    change.table,
                    change.event_type,
                )
        return delivered


class PostgresChangeListener:
    """Bridges Postgres NOTIFY payloads emitted by ``notify_row_change()`` into a hub.

    A LISTEN connection that drops is re-opened with exponential backoff until
    ``stop()`` is called.
    """

    def __init__(
        self,
        repository: PostgresRepository,
        hub: RealtimeHub,
        channel: str,
        *,
        reconnect_initial_seconds: float = 0.5,
        reconnect_max_seconds: float = 30.0,
    ) -> None:
        self.repository = repository
        self.hub = hub
        self.channel = channel
        self.reconnect_initial_seconds = reconnect_initial_seconds
        self.reconnect_max_seconds = reconnect_max_seconds
        self._connection: asyncpg.Connection | None = None
        self._tasks: set[asyncio.Task[int]] = set()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._stopping = False

    async def start(self) -> None:
        if self._connection is not None:
            return
        self._stopping = False
        await self._connect()
        logger.info("realtime listener started channel=%s", self.channel)

    async def stop(self) -> None:
        self._stopping = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)
            self._reconnect_task = None
        if self._connection is not None:
            connection, self._connection = self._connection, None
            connection.remove_termination_listener(self._on_terminated)
            try:
                await connection.remove_listener(self.channel, self._on_notify)
            finally:
                await connection.close()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        logger.info("realtime listener stopped channel=%s", self.channel)

    async def _connect(self) -> None:
        connection = await self.repository.listen(self.channel)
        try:
            connection.add_termination_listener(self._on_terminated)
            await connection.add_listener(self.channel, self._on_notify)
        except BaseException:
            await connection.close()
            raise
        self._connection = connection

    def _on_terminated(self, connection: Any) -> None:
        if self._stopping or connection is not self._connection:
            return
        self._connection = None
        logger.warning("realtime listener connection lost channel=%s; reconnecting", self.channel)
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        delay = self.reconnect_initial_seconds
        while not self._stopping:
            try:
                await self._connect()
            except _LISTEN_ERRORS:
                logger.warning(
                    "realtime reconnect failed channel=%s; retrying in %.1fs",
                    self.channel,
                    delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.reconnect_max_seconds)
                continue
            logger.info("realtime listener reconnected channel=%s", self.channel)
            return

    def _on_notify(self, _connection: Any, _pid: int, _channel: str, payload: str) -> None:
        change = parse_change_payload(payload)
        if change is None:
            logger.warning("ignoring malformed realtime payload on channel=%s", self.channel)
            return
        task = asyncio.get_running_loop().create_task(self.hub.dispatch(change))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def parse_change_payload(payload: str | bytes | None) -> RowChange | None:
    if not payload:
        return None
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    table = data.get("table")
    event_type = data.get("type")
    if not isinstance(table, str) or not isinstance(event_type, str):
        return None
    event_type = event_type.upper()
    if event_type not in EVENT_TYPES:
        return None

    record = data.get("record")
    old_record = data.get("old_record")
    return RowChange(
        table=table,
        event_type=event_type,
        record=record if isinstance(record, dict) else {},
        old_record=old_record if isinstance(old_record, dict) else {},
    )


def _normalize_event_types(event_types: Iterable[str] | str) -> frozenset[str]:
    if isinstance(event_types, str):
        event_types = [event_types]
    normalized: set[str] = set()
    for event_type in event_types:
        upper = event_type.strip().upper()
        if upper == "*":
            normalized.update(EVENT_TYPES)
        elif upper in EVENT_TYPES:
            normalized.add(upper)
        else:
            raise ValueError(f"unsupported realtime event type: {event_type}")
    if not normalized:
        raise ValueError("at least one realtime event type is required")
    return frozenset(normalized)


@lru_cache
def get_realtime_hub() -> RealtimeHub:
    return RealtimeHub()
