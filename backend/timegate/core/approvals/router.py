import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.approvals import service
from timegate.core.approvals.schemas import (
    ApprovalSettingsRead, ApprovalSettingsUpdate, StageApprovalCreate, StageApprovalRead, SweepReportRead,
)
from timegate.core.rbac.permissions import SystemPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import require_system_permission
from timegate.core.timesheets.service import view_timesheet
from timegate.dependencies import get_current_principal, get_db

router = APIRouter(tags=["approvals"])


@router.get("/projects/{project_id}/approval-settings", response_model=ApprovalSettingsRead)
async def get_settings(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.get_settings(db, principal, project_id)


@router.patch("/projects/{project_id}/approval-settings", response_model=ApprovalSettingsRead)
async def update_settings(
    project_id: uuid.UUID,
    data: ApprovalSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.update_settings(db, principal, project_id, data)


@router.get("/time-sheets/{time_sheet_id}/stage-approvals", response_model=list[StageApprovalRead])
async def list_stage_approvals(
    time_sheet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    sheet = await view_timesheet(db, principal, time_sheet_id)
    return await service.list_stage_approvals(db, sheet.id)


@router.post("/time-sheets/{time_sheet_id}/stage-approvals", response_model=StageApprovalRead, status_code=201)
async def approve_stage(
    time_sheet_id: uuid.UUID,
    data: StageApprovalCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.approve_stage(db, principal, time_sheet_id, data)


@router.post("/admin/auto-approval-sweep", response_model=SweepReportRead)
async def run_sweep(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    require_system_permission(principal, SystemPermission.PLATFORM_MANAGE)
    return await service.run_auto_approval_sweep(db)
