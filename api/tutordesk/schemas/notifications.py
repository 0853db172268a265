from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class NotificationStudentOut(BaseModel):
    id: str
    name: str = "Student"
    profile_photo_url: str = ""
    city: str = ""
    area: str = ""


class NotificationOut(BaseModel):
    id: str
    user_id: str
    type: str
    title: str | None = None
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime | None = None
    student_profile: NotificationStudentOut | None = None


class NotificationFeedOut(BaseModel):
    notifications: list[NotificationOut] = Field(default_factory=list)
    unread_messages: int = 0
    requirement_badge: int = 0
