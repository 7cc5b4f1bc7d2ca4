"""
Time entries and the Entry Status Machine.

    pending ──▶ approved ◀──▶ questioned
       ▲____________|______________|        (pending: administrative edit only)

Message-driven transitions: posting an EntryMessage whose status_change is
'approved' (needs entries:approve) or 'questioned' (needs entries:question).
The message row and the entry status write are flushed in the caller's single
transaction; a denied guard raises before either is written.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.entries.models import EntryMessage, EntryStatus, TimeEntry
from timegate.core.entries.schemas import (
    EntryMessageCreate, EntryMessageUpdate, TimeEntryCreate, TimeEntryUpdate,
)
from timegate.core.rbac.permissions import ProjectPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import require_owned_or_any, require_project_permission
from timegate.errors import InvalidRequest, InvalidStateTransition, NotFound, Unauthorized

logger = logging.getLogger(__name__)

STATUS_CHANGE_PERMISSIONS = {
    EntryStatus.APPROVED.value: ProjectPermission.ENTRIES_APPROVE,
    EntryStatus.QUESTIONED.value: ProjectPermission.ENTRIES_QUESTION,
}


# ── Time entries ──────────────────────────────────────────────────────────────

async def get_entry(db: AsyncSession, entry_id: uuid.UUID) -> TimeEntry | None:
    result = await db.execute(
        select(TimeEntry).where(TimeEntry.id == entry_id, TimeEntry.is_deleted == False)
    )
    return result.scalar_one_or_none()


async def get_entry_locked(db: AsyncSession, entry_id: uuid.UUID) -> TimeEntry:
    """Row-level lock for status and content writes."""
    result = await db.execute(
        select(TimeEntry)
        .where(TimeEntry.id == entry_id, TimeEntry.is_deleted == False)
        .with_for_update()
    )
    entry = result.scalar_one_or_none()
    if not entry:
        raise NotFound("Time entry not found")
    return entry


async def create_entry(
    db: AsyncSession,
    principal: Principal,
    data: TimeEntryCreate,
) -> TimeEntry:
    await require_project_permission(db, principal, data.project_id, ProjectPermission.TIME_ENTRIES_CREATE)
    if data.hours <= 0:
        raise InvalidRequest("hours must be greater than zero")

    entry = TimeEntry(
        project_id=data.project_id,
        organisation_id=data.organisation_id,
        title=data.title,
        description=data.description,
        hours=data.hours,
        work_date=data.work_date,
        status=EntryStatus.PENDING.value,
        created_by=principal.id,
    )
    db.add(entry)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=data.project_id,
        action="timeentry.create", resource_type="time_entry",
        resource_id=str(entry.id),
        detail={"work_date": str(data.work_date), "hours": data.hours},
    )
    await db.refresh(entry)
    return entry


async def list_entries(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    status: EntryStatus | None = None,
) -> list[TimeEntry]:
    await require_project_permission(db, principal, project_id, ProjectPermission.TIME_ENTRIES_VIEW)
    q = select(TimeEntry).where(TimeEntry.project_id == project_id, TimeEntry.is_deleted == False)
    if status:
        q = q.where(TimeEntry.status == EntryStatus(status).value)
    result = await db.execute(q.order_by(TimeEntry.work_date.desc(), TimeEntry.created_at.desc()))
    return list(result.scalars().all())


async def view_entry(db: AsyncSession, principal: Principal, entry_id: uuid.UUID) -> TimeEntry:
    entry = await get_entry(db, entry_id)
    if not entry:
        raise NotFound("Time entry not found")
    await require_project_permission(db, principal, entry.project_id, ProjectPermission.TIME_ENTRIES_VIEW)
    return entry


async def update_entry(
    db: AsyncSession,
    principal: Principal,
    entry_id: uuid.UUID,
    data: TimeEntryUpdate,
    now: datetime | None = None,
) -> TimeEntry:
    entry = await get_entry_locked(db, entry_id)
    await require_owned_or_any(
        db, principal, entry.project_id,
        owner_id=entry.created_by,
        own=ProjectPermission.TIME_ENTRIES_EDIT_OWN,
        any_=ProjectPermission.TIME_ENTRIES_EDIT_ALL,
    )
    changes = data.model_dump(exclude_none=True)
    if not changes:
        return entry
    for field, value in changes.items():
        setattr(entry, field, value)
    entry.edited_at = now or datetime.now(timezone.utc)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=entry.project_id,
        action="timeentry.update", resource_type="time_entry",
        resource_id=str(entry.id), detail={k: str(v) for k, v in changes.items()},
    )
    await db.refresh(entry)
    return entry


async def delete_entry(
    db: AsyncSession,
    principal: Principal,
    entry_id: uuid.UUID,
) -> None:
    entry = await get_entry_locked(db, entry_id)
    await require_owned_or_any(
        db, principal, entry.project_id,
        owner_id=entry.created_by,
        own=ProjectPermission.TIME_ENTRIES_DELETE_OWN,
        any_=ProjectPermission.TIME_ENTRIES_DELETE_ALL,
    )

    from timegate.core.timesheets.models import TimeSheet, TimeSheetEntry
    result = await db.execute(
        select(TimeSheet.id)
        .join(TimeSheetEntry, TimeSheetEntry.time_sheet_id == TimeSheet.id)
        .where(TimeSheetEntry.time_entry_id == entry.id, TimeSheet.status != "draft")
    )
    if result.first() is not None:
        raise InvalidStateTransition("Entry belongs to a submitted or approved time sheet")

    entry.is_deleted = True
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=entry.project_id,
        action="timeentry.delete", resource_type="time_entry", resource_id=str(entry.id),
    )


def _apply_status(entry: TimeEntry, status: str, actor_id: uuid.UUID | None, at: datetime) -> str:
    previous = entry.status
    entry.status = status
    entry.status_changed_at = at
    entry.status_changed_by = actor_id
    return previous


async def set_entry_status(
    db: AsyncSession,
    principal: Principal,
    entry_id: uuid.UUID,
    status: EntryStatus,
    now: datetime | None = None,
) -> TimeEntry:
    """Administrative status edit; the only path back to pending."""
    entry = await get_entry_locked(db, entry_id)
    await require_project_permission(db, principal, entry.project_id, ProjectPermission.ENTRIES_CHANGE_STATUS)
    at = now or datetime.now(timezone.utc)
    previous = _apply_status(entry, EntryStatus(status).value, principal.id, at)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=entry.project_id,
        action="timeentry.status", resource_type="time_entry", resource_id=str(entry.id),
        detail={"from": previous, "to": entry.status, "via": "admin"}, at=at,
    )
    logger.info("entry %s status %s -> %s (admin edit by %s)", entry.id, previous, entry.status, principal.id)
    await db.refresh(entry)
    return entry


# ── Messages ──────────────────────────────────────────────────────────────────

async def post_message(
    db: AsyncSession,
    principal: Principal,
    entry_id: uuid.UUID,
    data: EntryMessageCreate,
    now: datetime | None = None,
) -> EntryMessage:
    entry = await get_entry_locked(db, entry_id)

    if data.status_change is None:
        await require_project_permission(db, principal, entry.project_id, ProjectPermission.MESSAGES_CREATE)
    else:
        permission = STATUS_CHANGE_PERMISSIONS.get(data.status_change)
        if permission is None:
            raise InvalidStateTransition(f"Status '{data.status_change}' cannot be set by a message")
        await require_project_permission(db, principal, entry.project_id, permission)

    if data.parent_message_id is not None:
        parent = await get_message(db, data.parent_message_id)
        if not parent or parent.time_entry_id != entry.id:
            raise NotFound("Parent message not found")

    at = now or datetime.now(timezone.utc)
    message = EntryMessage(
        time_entry_id=entry.id,
        author_id=principal.id,
        content=data.content,
        parent_message_id=data.parent_message_id,
        status_change=data.status_change,
        created_at=at,
        updated_at=at,
    )
    db.add(message)

    if data.status_change is not None:
        previous = _apply_status(entry, data.status_change, principal.id, at)
        logger.info(
            "entry %s status %s -> %s by %s", entry.id, previous, entry.status, principal.id,
            extra={"principal_id": principal.id, "project_id": entry.project_id, "event_type": "entry.status"},
        )
    await db.flush()

    if data.status_change is not None:
        from timegate.core.audit.service import audit
        await audit(db, user_id=principal.id, project_id=entry.project_id,
            action="timeentry.status", resource_type="time_entry", resource_id=str(entry.id),
            detail={"from": previous, "to": entry.status, "message_id": str(message.id)}, at=at,
        )
    await db.refresh(message)
    return message


async def get_message(db: AsyncSession, message_id: uuid.UUID) -> EntryMessage | None:
    result = await db.execute(select(EntryMessage).where(EntryMessage.id == message_id))
    return result.scalar_one_or_none()


async def list_thread(
    db: AsyncSession,
    principal: Principal,
    entry_id: uuid.UUID,
    include_deleted: bool = False,
) -> list[EntryMessage]:
    """Normal rendering hides soft-deleted messages; audit queries pass include_deleted."""
    entry = await get_entry(db, entry_id)
    if not entry:
        raise NotFound("Time entry not found")
    await require_project_permission(db, principal, entry.project_id, ProjectPermission.MESSAGES_VIEW)
    q = select(EntryMessage).where(EntryMessage.time_entry_id == entry.id)
    if not include_deleted:
        q = q.where(EntryMessage.deleted_at.is_(None))
    result = await db.execute(q.order_by(EntryMessage.created_at.asc()))
    return list(result.scalars().all())


async def count_messages(db: AsyncSession, entry_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(EntryMessage.id)).where(
            EntryMessage.time_entry_id == entry_id,
            EntryMessage.deleted_at.is_(None),
        )
    )
    return result.scalar_one() or 0


async def latest_message(db: AsyncSession, entry_id: uuid.UUID) -> EntryMessage | None:
    result = await db.execute(
        select(EntryMessage)
        .where(EntryMessage.time_entry_id == entry_id, EntryMessage.deleted_at.is_(None))
        .order_by(EntryMessage.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _load_live_message(db: AsyncSession, message_id: uuid.UUID) -> tuple[EntryMessage, TimeEntry]:
    message = await get_message(db, message_id)
    if not message or message.deleted_at is not None:
        raise NotFound("Message not found")
    entry = await get_entry(db, message.time_entry_id)
    if not entry:
        raise NotFound("Message not found")
    return message, entry


async def edit_message(
    db: AsyncSession,
    principal: Principal,
    message_id: uuid.UUID,
    data: EntryMessageUpdate,
) -> EntryMessage:
    """Authors may reword a message; its status_change is never editable."""
    message, entry = await _load_live_message(db, message_id)
    await require_project_permission(db, principal, entry.project_id, ProjectPermission.MESSAGES_CREATE)
    if message.author_id != principal.id:
        raise Unauthorized("Only the author can edit a message")
    message.content = data.content
    await db.flush()
    await db.refresh(message)
    return message


async def delete_message(
    db: AsyncSession,
    principal: Principal,
    message_id: uuid.UUID,
    now: datetime | None = None,
) -> EntryMessage:
    message, entry = await _load_live_message(db, message_id)
    await require_owned_or_any(
        db, principal, entry.project_id,
        owner_id=message.author_id,
        own=ProjectPermission.MESSAGES_DELETE_OWN,
        any_=ProjectPermission.MESSAGES_DELETE_ALL,
    )
    message.deleted_at = now or datetime.now(timezone.utc)
    message.deleted_by = principal.id
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=entry.project_id,
        action="entrymessage.delete", resource_type="entry_message", resource_id=str(message.id),
        detail={"time_entry_id": str(entry.id), "status_change": message.status_change},
    )
    await db.refresh(message)
    return message
