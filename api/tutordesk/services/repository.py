from __future__ import annotations

import asyncio
import json
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from tutordesk.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable, not configured, or a read fails."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryWriteError(RepositoryError):
    """Raised when an insert, update or upsert is rejected by the database."""


MATCH_STATUSES = {"interested", "not_interested"}
PROFILE_COLUMNS = "user_id::text as user_id, full_name, profile_photo_url, city, area"
MESSAGE_COLUMNS = """
  id::text as id,
  sender_id::text as sender_id,
  receiver_id::text as receiver_id,
  content,
  message_type,
  related_requirement_id::text as related_requirement_id,
  read,
  created_at
"""
NOTIFICATION_COLUMNS = """
  id::text as id,
  user_id::text as user_id,
  type,
  title,
  message,
  data,
  is_read,
  created_at
"""
REQUIREMENT_COLUMNS = """
  id::text as id,
  student_id::text as student_id,
  subject,
  location,
  description,
  category,
  budget_range,
  preferred_time,
  preferred_teaching_mode,
  urgency,
  status,
  created_at
"""

_READ_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)
_WRITE_ERRORS = (
    pg_exc.IntegrityConstraintViolationError,
    pg_exc.InvalidTextRepresentationError,
    asyncpg.DataError,
)


class PostgresRepository:
    """Persistence gateway over the Supabase Postgres tables used by the dashboard."""

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout_seconds: float = 15.0,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout_seconds = max(1.0, command_timeout_seconds)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        row = await self._fetchrow(
            f"""
            select {PROFILE_COLUMNS}, role
            from profiles
            where user_id = $1::uuid
            """,
            user_id,
        )
        if row is None:
            return None
        profile = self._profile_row_to_dict(row)
        profile["role"] = row["role"]
        return profile

    async def get_tutor_profile(self, user_id: str) -> dict[str, Any] | None:
        row = await self._fetchrow(
            """
            select
              id::text as id,
              user_id::text as user_id,
              subjects,
              verified,
              rating,
              total_reviews,
              profile_completion_percentage,
              response_time_hours
            from tutor_profiles
            where user_id = $1::uuid
            """,
            user_id,
        )
        if row is None:
            return None
        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "subjects": self._coerce_text_list(list(row["subjects"] or [])),
            "verified": bool(row["verified"]),
            "rating": self._coerce_float(row["rating"]) or 0.0,
            "total_reviews": self._coerce_int(row["total_reviews"]) or 0,
            "profile_completion_percentage": self._clamp_percentage(row["profile_completion_percentage"]),
            "response_time_hours": self._coerce_int(row["response_time_hours"]),
        }

    async def list_profiles_by_user_ids(self, user_ids: list[str]) -> list[dict[str, Any]]:
        if not user_ids:
            return []
        rows = await self._fetch(
            f"""
            select {PROFILE_COLUMNS}
            from profiles
            where user_id = any($1::uuid[])
            """,
            list(user_ids),
        )
        return [self._profile_row_to_dict(row) for row in rows]

    async def list_active_requirements(self) -> list[dict[str, Any]]:
        rows = await self._fetch(
            f"""
            select {REQUIREMENT_COLUMNS}
            from requirements
            where status = 'active'
            order by created_at desc
            """
        )
        return [self._requirement_row_to_dict(row) for row in rows]

    async def get_requirement(self, requirement_id: str) -> dict[str, Any] | None:
        row = await self._fetchrow(
            f"""
            select {REQUIREMENT_COLUMNS}
            from requirements
            where id = $1::uuid
            """,
            requirement_id,
        )
        return self._requirement_row_to_dict(row) if row else None

    async def list_tutor_matches(self, *, tutor_id: str, requirement_ids: list[str]) -> list[dict[str, Any]]:
        if not requirement_ids:
            return []
        rows = await self._fetch(
            """
            select
              requirement_id::text as requirement_id,
              status
            from requirement_tutor_matches
            where tutor_id = $1::uuid
              and requirement_id = any($2::uuid[])
            """,
            tutor_id,
            list(requirement_ids),
        )
        return [{"requirement_id": row["requirement_id"], "status": row["status"]} for row in rows]

    async def upsert_requirement_match(
        self,
        *,
        requirement_id: str,
        tutor_id: str,
        status: str,
        response_message: str | None,
        proposed_rate: float | None,
    ) -> dict[str, Any]:
        if status not in MATCH_STATUSES:
            raise RepositoryWriteError(f"invalid match status: {status}")

        row = await self._write_row(
            """
            insert into requirement_tutor_matches (
              requirement_id,
              tutor_id,
              status,
              response_message,
              proposed_rate,
              updated_at
            )
            values ($1::uuid, $2::uuid, $3, $4, $5, now())
            on conflict (requirement_id, tutor_id) do update
            set
              status = excluded.status,
              response_message = excluded.response_message,
              proposed_rate = excluded.proposed_rate,
              updated_at = excluded.updated_at
            returning
              requirement_id::text as requirement_id,
              tutor_id::text as tutor_id,
              status,
              response_message,
              proposed_rate,
              updated_at
            """,
            requirement_id,
            tutor_id,
            status,
            self._coerce_text(response_message),
            self._coerce_float(proposed_rate),
        )
        return {
            "requirement_id": row["requirement_id"],
            "tutor_id": row["tutor_id"],
            "status": row["status"],
            "response_message": row["response_message"],
            "proposed_rate": self._coerce_float(row["proposed_rate"]),
            "updated_at": row["updated_at"],
        }

    async def insert_message(
        self,
        *,
        sender_id: str,
        receiver_id: str,
        content: str,
        message_type: str = "text",
        related_requirement_id: str | None = None,
    ) -> dict[str, Any]:
        row = await self._write_row(
            f"""
            insert into messages (
              sender_id,
              receiver_id,
              content,
              message_type,
              related_requirement_id
            )
            values ($1::uuid, $2::uuid, $3, $4, $5::uuid)
            returning {MESSAGE_COLUMNS}
            """,
            sender_id,
            receiver_id,
            content,
            message_type,
            related_requirement_id,
        )
        return self._message_row_to_dict(row)

    async def insert_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        row = await self._write_row(
            f"""
            insert into notifications (user_id, type, title, message, data, is_read)
            values ($1::uuid, $2, $3, $4, $5::jsonb, false)
            returning {NOTIFICATION_COLUMNS}
            """,
            user_id,
            type,
            title,
            message,
            json.dumps(data, default=str),
        )
        return self._notification_row_to_dict(row)

    async def list_notifications(
        self,
        *,
        user_id: str,
        types: list[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = await self._fetch(
            f"""
            select {NOTIFICATION_COLUMNS}
            from notifications
            where user_id = $1::uuid
              and ($2::text[] is null or type = any($2::text[]))
            order by created_at desc
            limit $3
            """,
            user_id,
            list(types) if types else None,
            limit,
        )
        return [self._notification_row_to_dict(row) for row in rows]

    async def count_unread_messages(self, receiver_id: str) -> int:
        count = await self._fetchval(
            """
            select count(*)
            from messages
            where receiver_id = $1::uuid
              and read = false
            """,
            receiver_id,
        )
        return int(count or 0)

    async def count_unread_notifications(self, *, user_id: str, type: str) -> int:
        count = await self._fetchval(
            """
            select count(*)
            from notifications
            where user_id = $1::uuid
              and type = $2
              and is_read = false
            """,
            user_id,
            type,
        )
        return int(count or 0)

    async def call_get_conversation_messages(
        self,
        *,
        user_id: str,
        counterpart_id: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        rows = await self._fetch(
            f"select {MESSAGE_COLUMNS} from get_conversation_messages($1::uuid, $2::uuid, $3)",
            user_id,
            counterpart_id,
            limit,
        )
        return [self._message_row_to_dict(row) for row in rows]

    async def list_conversation_messages(
        self,
        *,
        user_id: str,
        counterpart_id: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        rows = await self._fetch(
            f"""
            select {MESSAGE_COLUMNS}
            from messages
            where (sender_id = $1::uuid and receiver_id = $2::uuid)
               or (sender_id = $2::uuid and receiver_id = $1::uuid)
            order by created_at asc
            limit $3
            """,
            user_id,
            counterpart_id,
            limit,
        )
        return [self._message_row_to_dict(row) for row in rows]

    async def list_recent_messages(self, *, user_id: str, limit: int) -> list[dict[str, Any]]:
        rows = await self._fetch(
            f"""
            select {MESSAGE_COLUMNS}
            from messages
            where sender_id = $1::uuid
               or receiver_id = $1::uuid
            order by created_at desc
            limit $2
            """,
            user_id,
            limit,
        )
        return [self._message_row_to_dict(row) for row in rows]

    async def call_mark_messages_as_read(self, *, sender_id: str, receiver_id: str) -> None:
        await self._write_execute(
            "select mark_messages_as_read($1::uuid, $2::uuid)",
            sender_id,
            receiver_id,
        )

    async def mark_message_notifications_read(self, *, user_id: str, sender_id: str) -> int:
        status = await self._write_execute(
            """
            update notifications
            set is_read = true
            where user_id = $1::uuid
              and type = 'message'
              and data->>'sender_id' = $2
              and is_read = false
            """,
            user_id,
            sender_id,
        )
        return self._affected_rows(status)

    async def update_tutor_response_time(self, *, user_id: str, response_time_hours: int) -> None:
        status = await self._write_execute(
            """
            update tutor_profiles
            set response_time_hours = $2
            where user_id = $1::uuid
            """,
            user_id,
            int(response_time_hours),
        )
        if self._affected_rows(status) == 0:
            raise RepositoryNotFoundError("tutor profile not found")

    async def listen(self, channel: str) -> asyncpg.Connection:
        """Open a dedicated connection for LISTEN; the caller owns and closes it."""
        if not self.database_url:
            raise RepositoryUnavailableError("TD_DATABASE_URL is required")
        try:
            return await asyncpg.connect(dsn=self.database_url, command_timeout=self.command_timeout_seconds)
        except _READ_ERRORS as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError(f"cannot open listener connection for {channel}") from exc

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            return await pool.fetch(query, *args)
        except _READ_ERRORS as exc:
            raise RepositoryUnavailableError(str(exc) or "database read failed") from exc

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        pool = await self._get_pool()
        try:
            return await pool.fetchrow(query, *args)
        except _READ_ERRORS as exc:
            raise RepositoryUnavailableError(str(exc) or "database read failed") from exc

    async def _fetchval(self, query: str, *args: Any) -> Any:
        pool = await self._get_pool()
        try:
            return await pool.fetchval(query, *args)
        except _READ_ERRORS as exc:
            raise RepositoryUnavailableError(str(exc) or "database read failed") from exc

    async def _write_row(self, query: str, *args: Any) -> asyncpg.Record:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(query, *args)
        except _WRITE_ERRORS as exc:
            raise RepositoryWriteError(str(exc)) from exc
        except _READ_ERRORS as exc:
            raise RepositoryUnavailableError(str(exc) or "database write failed") from exc
        if row is None:
            raise RepositoryWriteError("write returned no row")
        return row

    async def _write_execute(self, query: str, *args: Any) -> str:
        pool = await self._get_pool()
        try:
            return await pool.execute(query, *args)
        except _WRITE_ERRORS as exc:
            raise RepositoryWriteError(str(exc)) from exc
        except _READ_ERRORS as exc:
            raise RepositoryUnavailableError(str(exc) or "database write failed") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("TD_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout_seconds,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _profile_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "user_id": row["user_id"],
            "full_name": row["full_name"],
            "profile_photo_url": row["profile_photo_url"],
            "city": row["city"],
            "area": row["area"],
        }

    @staticmethod
    def _requirement_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "student_id": row["student_id"],
            "subject": row["subject"],
            "location": row["location"],
            "description": row["description"],
            "category": row["category"],
            "budget_range": row["budget_range"],
            "preferred_time": row["preferred_time"],
            "preferred_teaching_mode": row["preferred_teaching_mode"],
            "urgency": row["urgency"],
            "status": row["status"],
            "created_at": row["created_at"],
        }

    @staticmethod
    def _message_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "sender_id": row["sender_id"],
            "receiver_id": row["receiver_id"],
            "content": row["content"],
            "message_type": row["message_type"],
            "related_requirement_id": row["related_requirement_id"],
            "read": bool(row["read"]),
            "created_at": row["created_at"],
        }

    def _notification_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "type": row["type"],
            "title": row["title"],
            "message": row["message"],
            "data": self._coerce_json_dict(row["data"]),
            "is_read": bool(row["is_read"]),
            "created_at": row["created_at"],
        }

    @staticmethod
    def _affected_rows(status: str | None) -> int:
        # asyncpg returns command tags such as "UPDATE 3".
        if not status:
            return 0
        try:
            return int(status.rsplit(" ", maxsplit=1)[-1])
        except ValueError:
            return 0

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _coerce_text_list(value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        items: list[str] = []
        for item in value:
            if not isinstance(item, str):
                continue
            stripped = item.strip()
            if stripped:
                items.append(stripped)
        return items

    @staticmethod
    def _coerce_float(value: Any) -> float | None:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_int(value: Any) -> int | None:
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def _clamp_percentage(self, value: Any) -> int:
        percentage = self._coerce_int(value) or 0
        return min(100, max(0, percentage))

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout_seconds=settings.database_command_timeout_seconds,
    )
