from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

MatchStatus = Literal["interested", "not_interested"]
ResponseOutcomeStatus = Literal["ok", "degraded"]
SideEffectStep = Literal["chat", "notification"]


class StudentSummaryOut(BaseModel):
    user_id: str
    full_name: str | None = None
    profile_photo_url: str | None = None
    city: str | None = None
    area: str | None = None


class RequirementOut(BaseModel):
    id: str
    student_id: str | None = None
    subject: str | None = None
    location: str | None = None
    description: str | None = None
    category: str | None = None
    budget_range: str | None = None
    preferred_time: str | None = None
    preferred_teaching_mode: str | None = None
    urgency: str | None = None
    status: str = "active"
    created_at: datetime | None = None
    student: StudentSummaryOut | None = None
    has_responded: bool = False


class RequirementResponseRequest(BaseModel):
    status: MatchStatus
    message: str | None = Field(default=None, max_length=2000)
    proposed_rate: float | None = Field(default=None, ge=0)


class SideEffectWarningOut(BaseModel):
    step: SideEffectStep
    detail: str


class RequirementResponseOut(BaseModel):
    requirement_id: str
    tutor_id: str
    status: MatchStatus
    outcome: ResponseOutcomeStatus
    detail: str
    warnings: list[SideEffectWarningOut] = Field(default_factory=list)
