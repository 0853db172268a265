import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class MessageOut(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: str | None = None
    related_requirement_id: str | None = None
    read: bool = False
    created_at: datetime | None = None


class MessageCreateRequest(BaseModel):
    receiver_id: uuid.UUID
    content: str = Field(min_length=1, max_length=4000)


class UnreadCountOut(BaseModel):
    unread: int


class MarkReadOut(BaseModel):
    counterpart_id: str
    notifications_cleared: int


class InterestedStudentOut(BaseModel):
    id: str
    name: str = "Student"
    profile_photo_url: str = ""
    city: str = ""
    area: str = ""
    interest_date: datetime | None = None
