import uuid
from datetime import datetime, date
from pydantic import BaseModel, Field, model_validator
from typing import Literal

from timegate.core.approvals.schemas import StageStateRead
from timegate.core.entries.schemas import TimeEntryRead

VALID_TIMESHEET_STATUSES = Literal["draft", "submitted", "approved", "rejected"]


class TimeSheetCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    project_id: uuid.UUID | None = None
    organisation_id: uuid.UUID | None = None
    account_id: uuid.UUID | None = None
    entry_ids: list[uuid.UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_dates(self) -> "TimeSheetCreate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TimeSheetUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class TimeSheetRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    title: str
    description: str | None
    start_date: date | None
    end_date: date | None
    status: str
    submitted_date: datetime | None
    submitted_by: uuid.UUID | None
    approved_date: datetime | None
    approved_by: uuid.UUID | None
    rejected_date: datetime | None
    rejected_by: uuid.UUID | None
    rejection_reason: str | None
    organisation_id: uuid.UUID | None
    project_id: uuid.UUID | None
    account_id: uuid.UUID | None
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime


class SheetEntriesRequest(BaseModel):
    entry_ids: list[uuid.UUID] = Field(..., min_length=1)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class SheetEntryRead(BaseModel):
    entry: TimeEntryRead
    added_at: datetime
    approved_at: datetime | None
    last_stage: str | None
    stale_entry: bool


class TimeSheetDetailRead(BaseModel):
    time_sheet: TimeSheetRead
    entries: list[SheetEntryRead]
    total_hours: float


class ApprovalStatusRead(BaseModel):
    time_sheet_id: uuid.UUID
    status: str
    approval_mode: str
    stages: list[StageStateRead]
    next_stage: str | None
    entry_counts: dict[str, int]
    blockers: list[str]
    is_complete: bool
    stale_entry_ids: list[uuid.UUID]
