import uuid
from datetime import date, datetime
from typing import Literal
from pydantic import BaseModel, Field

from timegate.core.entries.models import EntryStatus


class TimeEntryCreate(BaseModel):
    project_id: uuid.UUID | None = None
    organisation_id: uuid.UUID | None = None
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    hours: float = Field(..., gt=0, le=24)
    work_date: date


class TimeEntryUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    hours: float | None = Field(None, gt=0, le=24)
    work_date: date | None = None


class TimeEntryRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    project_id: uuid.UUID | None
    organisation_id: uuid.UUID | None
    title: str
    description: str | None
    hours: float
    work_date: date
    status: str
    status_changed_at: datetime | None
    status_changed_by: uuid.UUID | None
    edited_at: datetime | None
    created_by: uuid.UUID
    created_at: datetime


class EntryStatusUpdate(BaseModel):
    status: EntryStatus


class EntryMessageCreate(BaseModel):
    content: str = Field(..., min_length=1)
    parent_message_id: uuid.UUID | None = None
    # pending is an administrative edit, not a message action
    status_change: Literal["approved", "questioned"] | None = None


class EntryMessageUpdate(BaseModel):
    content: str = Field(..., min_length=1)


class EntryMessageRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    time_entry_id: uuid.UUID
    author_id: uuid.UUID | None
    content: str
    parent_message_id: uuid.UUID | None
    status_change: str | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
