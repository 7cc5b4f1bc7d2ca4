import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.entries import service
from timegate.core.entries.models import EntryStatus
from timegate.core.entries.schemas import (
    EntryMessageCreate, EntryMessageRead, EntryMessageUpdate, EntryStatusUpdate,
    TimeEntryCreate, TimeEntryRead, TimeEntryUpdate,
)
from timegate.core.rbac.permissions import ProjectPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import require_project_permission
from timegate.dependencies import get_current_principal, get_db

router = APIRouter(tags=["entries"])


# ── Time entries ──────────────────────────────────────────────────────────────

@router.post("/projects/{project_id}/time-entries", response_model=TimeEntryRead, status_code=201)
async def create_entry(
    project_id: uuid.UUID,
    data: TimeEntryCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    data.project_id = project_id
    return await service.create_entry(db, principal, data)


@router.get("/projects/{project_id}/time-entries", response_model=list[TimeEntryRead])
async def list_entries(
    project_id: uuid.UUID,
    status: EntryStatus | None = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_entries(db, principal, project_id, status)


@router.get("/time-entries/{entry_id}", response_model=TimeEntryRead)
async def get_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.view_entry(db, principal, entry_id)


@router.patch("/time-entries/{entry_id}", response_model=TimeEntryRead)
async def update_entry(
    entry_id: uuid.UUID,
    data: TimeEntryUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.update_entry(db, principal, entry_id, data)


@router.delete("/time-entries/{entry_id}", status_code=204)
async def delete_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.delete_entry(db, principal, entry_id)


@router.put("/time-entries/{entry_id}/status", response_model=TimeEntryRead)
async def set_entry_status(
    entry_id: uuid.UUID,
    data: EntryStatusUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.set_entry_status(db, principal, entry_id, data.status)


# ── Messages ──────────────────────────────────────────────────────────────────

@router.get("/time-entries/{entry_id}/messages", response_model=list[EntryMessageRead])
async def list_thread(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_thread(db, principal, entry_id)


@router.get("/time-entries/{entry_id}/messages/audit", response_model=list[EntryMessageRead])
async def audit_thread(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    entry = await service.view_entry(db, principal, entry_id)
    await require_project_permission(db, principal, entry.project_id, ProjectPermission.MESSAGES_DELETE_ALL)
    return await service.list_thread(db, principal, entry_id, include_deleted=True)


@router.post("/time-entries/{entry_id}/messages", response_model=EntryMessageRead, status_code=201)
async def post_message(
    entry_id: uuid.UUID,
    data: EntryMessageCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.post_message(db, principal, entry_id, data)


@router.patch("/messages/{message_id}", response_model=EntryMessageRead)
async def edit_message(
    message_id: uuid.UUID,
    data: EntryMessageUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.edit_message(db, principal, message_id, data)


@router.delete("/messages/{message_id}", response_model=EntryMessageRead)
async def delete_message(
    message_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.delete_message(db, principal, message_id)
