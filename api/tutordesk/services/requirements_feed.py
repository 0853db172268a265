from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from opentelemetry import trace

from tutordesk.core.auth import require_user_id
from tutordesk.services.matching import TutorMatchContext, filter_requirements, subject_matches
from tutordesk.services.realtime import RealtimeHub, RowChange, Subscription, column_equals
from tutordesk.services.repository import PostgresRepository, RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FeedEventSink = Callable[[dict[str, Any]], Awaitable[None]]


class RequirementFeed:
    """The tutor's worklist of matched, active requirements with response status."""

    def __init__(
        self,
        repository: PostgresRepository,
        tutor_id: str | None,
        *,
        on_event: FeedEventSink | None = None,
    ) -> None:
        self.repository = repository
        self.tutor_id = require_user_id(tutor_id)
        self.on_event = on_event
        self.items: list[dict[str, Any]] = []
        self.context: TutorMatchContext | None = None
        self.loading = False
        self._generation = 0
        self._subscriptions: list[Subscription] = []
        self._hub: RealtimeHub | None = None

    async def load(self) -> list[dict[str, Any]]:
        self._generation += 1
        generation = self._generation
        self.loading = True
        with tracer.start_as_current_span("requirements.load") as span:
            span.set_attribute("tutor.id", self.tutor_id)
            try:
                items = await self._load_matched_requirements()
            except RepositoryError:
                logger.warning("requirement feed load failed for tutor=%s", self.tutor_id, exc_info=True)
                items = []
            span.set_attribute("requirements.count", len(items))

        if generation != self._generation:
            # A newer load started while this one was in flight; its result wins.
            return items

        self.items = items
        self.loading = False
        await self._emit({"type": "requirements", "items": items})
        return items

    async def reload(self) -> list[dict[str, Any]]:
        return await self.load()

    def start(self, hub: RealtimeHub) -> None:
        if self._subscriptions:
            return
        self._hub = hub
        self._subscriptions = [
            hub.subscribe(
                "requirements",
                "INSERT",
                column_equals("status", "active"),
                self.handle_requirement_insert,
            ),
            # Responses recorded elsewhere (another session or the HTTP route).
            hub.subscribe(
                "requirement_tutor_matches",
                "*",
                column_equals("tutor_id", self.tutor_id),
                self.handle_match_change,
            ),
        ]

    def stop(self) -> None:
        if self._hub is not None:
            for subscription in self._subscriptions:
                self._hub.unsubscribe(subscription)
        self._subscriptions = []
        self._hub = None

    async def handle_requirement_insert(self, change: RowChange) -> bool:
        subject = change.record.get("subject")
        subjects = self.context.subjects if self.context is not None else ()
        if not subject_matches(subjects, subject):
            logger.debug("ignoring new requirement subject=%r for tutor=%s", subject, self.tutor_id)
            return False

        await self._emit(
            {
                "type": "alert",
                "title": "New Requirement Available!",
                "description": f"A student is looking for {subject} tutoring.",
            }
        )
        await self.load()
        return True

    async def handle_match_change(self, change: RowChange) -> bool:
        requirement_id = (change.record or change.old_record).get("requirement_id")
        responded = change.event_type != "DELETE"
        current = next((item for item in self.items if item.get("id") == requirement_id), None)
        if current is None or current.get("has_responded") == responded:
            return False
        await self.load()
        return True

    async def load_context(self) -> TutorMatchContext:
        tutor_profile = await self.repository.get_tutor_profile(self.tutor_id)
        user_profile = await self.repository.get_profile(self.tutor_id)
        self.context = TutorMatchContext.from_profiles(tutor_profile, user_profile)
        return self.context

    async def _load_matched_requirements(self) -> list[dict[str, Any]]:
        requirements = await self.repository.list_active_requirements()
        requirements = await self._attach_students(requirements)
        context = await self.load_context()
        matched = filter_requirements(context, requirements)
        return await self._annotate_responses(matched)

    async def _attach_students(self, requirements: list[dict[str, Any]]) -> list[dict[str, Any]]:
        student_ids = list(dict.fromkeys(req["student_id"] for req in requirements if req.get("student_id")))
        if not student_ids:
            return [dict(req) for req in requirements]

        try:
            profiles = await self.repository.list_profiles_by_user_ids(student_ids)
        except RepositoryError:
            logger.warning("student profile lookup failed; requirements shown without students", exc_info=True)
            return [dict(req) for req in requirements]

        by_user_id = {profile["user_id"]: profile for profile in profiles}
        return [{**req, "student": by_user_id.get(req.get("student_id"))} for req in requirements]

    async def _annotate_responses(self, requirements: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not requirements:
            return []

        try:
            matches = await self.repository.list_tutor_matches(
                tutor_id=self.tutor_id,
                requirement_ids=[req["id"] for req in requirements],
            )
        except RepositoryError:
            logger.warning("match status lookup failed for tutor=%s", self.tutor_id, exc_info=True)
            matches = []

        responded = {match["requirement_id"] for match in matches}
        return [{**req, "has_responded": req["id"] in responded} for req in requirements]

    async def _emit(self, event: dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            await self.on_event(event)
        except Exception:
            logger.exception("requirement feed event sink failed type=%s", event.get("type"))
