import uuid
from datetime import datetime
from pydantic import BaseModel, Field

from timegate.core.approvals.policy import ApprovalMode
from timegate.core.rbac.permissions import ProjectRole


class ApprovalSettingsUpdate(BaseModel):
    approval_mode: ApprovalMode | None = None
    approval_stages: list[ProjectRole] | None = None
    auto_approve_after_days: int | None = Field(None, ge=0, le=365)
    require_all_entries_approved: bool | None = None
    allow_self_approve_no_client: bool | None = None


class ApprovalSettingsRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    project_id: uuid.UUID
    approval_mode: str
    approval_stages: list[str] | None
    auto_approve_after_days: int
    require_all_entries_approved: bool
    allow_self_approve_no_client: bool
    updated_at: datetime


class StageApprovalCreate(BaseModel):
    stage: ProjectRole
    notes: str | None = None


class StageApprovalRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    time_sheet_id: uuid.UUID
    stage: str
    approved_by: uuid.UUID | None
    approved_at: datetime
    notes: str | None


class StageStateRead(BaseModel):
    model_config = {"from_attributes": True}
    stage: ProjectRole
    satisfied_by: uuid.UUID | None
    satisfied_at: datetime | None
    satisfied: bool


class SweepReportRead(BaseModel):
    model_config = {"from_attributes": True}
    projects_scanned: int
    entries_approved: int
    sheets_approved: int
    sheets_skipped: int
