"""Recording a tutor's decision on a requirement.

The primary write (the match upsert) must succeed; the chat seed and the
student notification that follow it are best-effort steps whose failures are
logged and reported as a degraded outcome without undoing the primary write.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from opentelemetry import trace

from tutordesk.core.auth import require_user_id
from tutordesk.services.repository import MATCH_STATUSES, PostgresRepository, RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Decision = Literal["interested", "not_interested"]
StepName = Literal["chat", "notification"]

RESPONSE_FAILED_DETAIL = "Failed to respond to requirement. Please try again."
NOTIFICATION_TITLE = "Tutor Response to Your Requirement"


class PrimaryWriteFailedError(Exception):
    """Raised when the match record could not be written; nothing else was written."""


class RequirementNotFoundError(Exception):
    """Raised when the requirement being responded to does not exist."""


class MissingStudentError(Exception):
    """Raised by a side effect step when the requirement carries no student to address."""


@dataclass(slots=True)
class SideEffectFailure:
    step: StepName
    detail: str


@dataclass(slots=True)
class ResponseContext:
    requirement: dict[str, Any]
    tutor_id: str
    decision: Decision
    message: str | None
    proposed_rate: float | None
    match: dict[str, Any] = field(default_factory=dict)
    chat_message: dict[str, Any] | None = None

    @property
    def requirement_id(self) -> str:
        return self.requirement["id"]

    @property
    def student_id(self) -> str | None:
        student = self.requirement.get("student")
        if isinstance(student, dict) and student.get("user_id"):
            return student["user_id"]
        return self.requirement.get("student_id")

    @property
    def subject(self) -> str:
        return self.requirement.get("subject") or "tutoring"


@dataclass(slots=True)
class ResponseOutcome:
    requirement_id: str
    tutor_id: str
    status: Decision
    match: dict[str, Any]
    failures: list[SideEffectFailure] = field(default_factory=list)

    @property
    def outcome(self) -> Literal["ok", "degraded"]:
        return "degraded" if self.failures else "ok"

    @property
    def acknowledgement(self) -> str:
        # Side-effect failures stay out of the user-facing text.
        action = "shown interest in" if self.status == "interested" else "declined"
        return f"You have {action} this requirement."


@dataclass(frozen=True, slots=True)
class SideEffectStep:
    name: StepName
    applies: Callable[[ResponseContext], bool]
    run: Callable[[ResponseContext], Awaitable[None]]


class ResponseCoordinator:
    def __init__(
        self,
        repository: PostgresRepository,
        *,
        on_committed: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        self.repository = repository
        self.on_committed = on_committed
        self.side_effects: tuple[SideEffectStep, ...] = (
            SideEffectStep("chat", lambda ctx: ctx.decision == "interested", self._seed_chat),
            SideEffectStep("notification", lambda ctx: True, self._notify_student),
        )

    async def respond(
        self,
        requirement_id: str,
        tutor_id: str | None,
        decision: Decision,
        message: str | None = None,
        proposed_rate: float | None = None,
        *,
        requirement: dict[str, Any] | None = None,
    ) -> ResponseOutcome:
        tutor_id = require_user_id(tutor_id)
        if decision not in MATCH_STATUSES:
            raise ValueError(f"invalid decision: {decision}")

        with tracer.start_as_current_span("requirements.respond") as span:
            span.set_attribute("requirement.id", requirement_id)
            span.set_attribute("response.status", decision)

            if requirement is None or requirement.get("id") != requirement_id:
                requirement = await self._resolve_requirement(requirement_id)

            ctx = ResponseContext(
                requirement=requirement,
                tutor_id=tutor_id,
                decision=decision,
                message=_clean_text(message),
                proposed_rate=proposed_rate,
            )
            ctx.match = await self._write_match(ctx)

            failures: list[SideEffectFailure] = []
            for step in self.side_effects:
                if not step.applies(ctx):
                    continue
                with tracer.start_as_current_span(f"requirements.respond.{step.name}"):
                    try:
                        await step.run(ctx)
                    except (RepositoryError, MissingStudentError) as exc:
                        logger.warning(
                            "response side effect failed step=%s requirement=%s tutor=%s",
                            step.name,
                            requirement_id,
                            tutor_id,
                            exc_info=True,
                        )
                        failures.append(SideEffectFailure(step=step.name, detail=str(exc) or step.name))

            outcome = ResponseOutcome(
                requirement_id=requirement_id,
                tutor_id=tutor_id,
                status=decision,
                match=ctx.match,
                failures=failures,
            )
            span.set_attribute("response.outcome", outcome.outcome)

        await self._after_commit()
        logger.info(
            "requirement response recorded requirement=%s tutor=%s status=%s outcome=%s",
            requirement_id,
            tutor_id,
            decision,
            outcome.outcome,
        )
        return outcome

    async def _resolve_requirement(self, requirement_id: str) -> dict[str, Any]:
        # Requirement ids are uuids; anything else can never resolve.
        try:
            uuid.UUID(str(requirement_id))
        except ValueError as exc:
            raise RequirementNotFoundError(f"requirement {requirement_id} not found") from exc
        try:
            requirement = await self.repository.get_requirement(requirement_id)
        except RepositoryError as exc:
            raise PrimaryWriteFailedError(RESPONSE_FAILED_DETAIL) from exc
        if requirement is None:
            raise RequirementNotFoundError(f"requirement {requirement_id} not found")
        return requirement

    async def _write_match(self, ctx: ResponseContext) -> dict[str, Any]:
        try:
            return await self.repository.upsert_requirement_match(
                requirement_id=ctx.requirement_id,
                tutor_id=ctx.tutor_id,
                status=ctx.decision,
                response_message=ctx.message,
                proposed_rate=ctx.proposed_rate,
            )
        except RepositoryError as exc:
            logger.error(
                "requirement match upsert failed requirement=%s tutor=%s: %s",
                ctx.requirement_id,
                ctx.tutor_id,
                exc,
            )
            raise PrimaryWriteFailedError(RESPONSE_FAILED_DETAIL) from exc

    async def _seed_chat(self, ctx: ResponseContext) -> None:
        if not ctx.student_id:
            raise MissingStudentError(f"requirement {ctx.requirement_id} has no student")
        content = ctx.message or (
            f"Hi! I'm interested in your {ctx.subject} requirement. I'd love to help you with this."
        )
        ctx.chat_message = await self.repository.insert_message(
            sender_id=ctx.tutor_id,
            receiver_id=ctx.student_id,
            content=content,
            message_type="requirement_response",
            related_requirement_id=ctx.requirement_id,
        )

    async def _notify_student(self, ctx: ResponseContext) -> None:
        if not ctx.student_id:
            raise MissingStudentError(f"requirement {ctx.requirement_id} has no student")
        if ctx.decision == "interested":
            text = f"A tutor has shown interest in your {ctx.subject} requirement."
            if ctx.chat_message is not None:
                text += " Check your messages to continue the conversation."
        else:
            text = f"A tutor has declined your {ctx.subject} requirement."

        await self.repository.insert_notification(
            user_id=ctx.student_id,
            type="requirement_response",
            title=NOTIFICATION_TITLE,
            message=text,
            data={
                "requirement_id": ctx.requirement_id,
                "tutor_id": ctx.tutor_id,
                "status": ctx.decision,
                "message": ctx.message,
                "proposed_rate": ctx.proposed_rate,
                "chat_initiated": ctx.chat_message is not None,
            },
        )

    async def _after_commit(self) -> None:
        if self.on_committed is None:
            return
        try:
            await self.on_committed()
        except Exception:
            logger.exception("post-response reload failed")


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
