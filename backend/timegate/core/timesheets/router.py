import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.approvals.schemas import StageStateRead
from timegate.core.entries.schemas import TimeEntryRead
from timegate.core.timesheets import service
from timegate.core.timesheets.schemas import (
    VALID_TIMESHEET_STATUSES,
    ApprovalStatusRead, RejectRequest, SheetEntriesRequest, SheetEntryRead,
    TimeSheetCreate, TimeSheetDetailRead, TimeSheetRead, TimeSheetUpdate,
)
from timegate.core.rbac.principal import Principal
from timegate.dependencies import get_current_principal, get_db

router = APIRouter(tags=["timesheets"])


def _entry_read(view: service.SheetEntryView) -> SheetEntryRead:
    return SheetEntryRead(
        entry=TimeEntryRead.model_validate(view.entry),
        added_at=view.link.created_at,
        approved_at=view.link.approved_at,
        last_stage=view.link.last_stage,
        stale_entry=view.stale_entry,
    )


# ── Sheets ────────────────────────────────────────────────────────────────────

@router.post("/projects/{project_id}/time-sheets", response_model=TimeSheetRead, status_code=201)
async def create_timesheet(
    project_id: uuid.UUID,
    data: TimeSheetCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    data.project_id = project_id
    return await service.create_timesheet(db, principal, data)


@router.get("/projects/{project_id}/time-sheets", response_model=list[TimeSheetRead])
async def list_timesheets(
    project_id: uuid.UUID,
    status: VALID_TIMESHEET_STATUSES | None = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_timesheets(db, principal, project_id, status)


@router.get("/projects/{project_id}/available-entries", response_model=list[TimeEntryRead])
async def available_entries(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.available_entries(db, principal, project_id)


@router.get("/time-sheets/{time_sheet_id}", response_model=TimeSheetDetailRead)
async def get_timesheet(
    time_sheet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    sheet, views, total_hours = await service.get_timesheet_with_entries(db, principal, time_sheet_id)
    return TimeSheetDetailRead(
        time_sheet=TimeSheetRead.model_validate(sheet),
        entries=[_entry_read(v) for v in views],
        total_hours=total_hours,
    )


@router.patch("/time-sheets/{time_sheet_id}", response_model=TimeSheetRead)
async def update_timesheet(
    time_sheet_id: uuid.UUID,
    data: TimeSheetUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.update_timesheet(db, principal, time_sheet_id, data)


@router.delete("/time-sheets/{time_sheet_id}", status_code=204)
async def delete_timesheet(
    time_sheet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.delete_timesheet(db, principal, time_sheet_id)


# ── Entries ───────────────────────────────────────────────────────────────────

@router.post("/time-sheets/{time_sheet_id}/entries", status_code=204)
async def add_entries(
    time_sheet_id: uuid.UUID,
    data: SheetEntriesRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.add_entries(db, principal, time_sheet_id, data.entry_ids)


@router.delete("/time-sheets/{time_sheet_id}/entries/{entry_id}", status_code=204)
async def remove_entry(
    time_sheet_id: uuid.UUID,
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.remove_entry(db, principal, time_sheet_id, entry_id)


# ── Transitions ───────────────────────────────────────────────────────────────

@router.post("/time-sheets/{time_sheet_id}/submit", response_model=TimeSheetRead)
async def submit_timesheet(
    time_sheet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.submit_timesheet(db, principal, time_sheet_id)


@router.post("/time-sheets/{time_sheet_id}/approve", response_model=TimeSheetRead)
async def approve_timesheet(
    time_sheet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.approve_timesheet(db, principal, time_sheet_id)


@router.post("/time-sheets/{time_sheet_id}/reject", response_model=TimeSheetRead)
async def reject_timesheet(
    time_sheet_id: uuid.UUID,
    data: RejectRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.reject_timesheet(db, principal, time_sheet_id, data.reason)


@router.post("/time-sheets/{time_sheet_id}/revert", response_model=TimeSheetRead)
async def revert_to_draft(
    time_sheet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.revert_to_draft(db, principal, time_sheet_id)


@router.get("/time-sheets/{time_sheet_id}/approval-status", response_model=ApprovalStatusRead)
async def approval_status(
    time_sheet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    result = await service.approval_status(db, principal, time_sheet_id)
    return ApprovalStatusRead(
        time_sheet_id=result.time_sheet.id,
        status=result.time_sheet.status,
        approval_mode=result.approval_mode.value,
        stages=[StageStateRead.model_validate(s) for s in result.stages],
        next_stage=result.next_stage,
        entry_counts=result.entry_counts,
        blockers=result.blockers,
        is_complete=result.is_complete,
        stale_entry_ids=result.stale_entry_ids,
    )
