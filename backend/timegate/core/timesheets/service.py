"""
Timesheet Aggregate.

    draft ──submit──▶ submitted ──approve──▶ approved
      ▲                  │
      │                reject
      │                  ▼
      └──revert──── rejected          (submitted ──revert──▶ draft as well)

approve() consults the project's ApprovalPolicy, resolved once per call.
Entries can be added or removed only while the sheet is a draft. Entries
edited after being added surface as stale, they never block a transition.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.approvals.policy import ApprovalMode, StageState, check_completion, next_stage, stage_states
from timegate.core.approvals.service import (
    clear_stage_approvals, list_stage_approvals, project_has_client, resolve_policy,
)
from timegate.core.entries.models import EntryStatus, TimeEntry
from timegate.core.rbac.permissions import ProjectPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import check_project_permission, require_active, require_project_permission
from timegate.core.timesheets.models import TimeSheet, TimeSheetEntry
from timegate.core.timesheets.schemas import TimeSheetCreate, TimeSheetUpdate
from timegate.db.base import as_utc
from timegate.errors import (
    ConflictingUniqueness, InvalidRequest, InvalidStateTransition, NotFound,
    PolicyNotSatisfied, Unauthorized,
)

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = {"draft"}
REVERTIBLE_STATUSES = {"submitted", "rejected"}


@dataclass
class SheetEntryView:
    entry: TimeEntry
    link: TimeSheetEntry

    @property
    def stale_entry(self) -> bool:
        if self.entry.edited_at is None:
            return False
        return as_utc(self.entry.edited_at) > as_utc(self.link.entry_edited_at)


@dataclass
class ApprovalStatus:
    time_sheet: TimeSheet
    approval_mode: ApprovalMode
    stages: list[StageState]
    next_stage: str | None
    entry_counts: dict[str, int]
    blockers: list[str] = field(default_factory=list)
    stale_entry_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.blockers


# ── Lookups ───────────────────────────────────────────────────────────────────

async def get_timesheet(db: AsyncSession, time_sheet_id: uuid.UUID) -> TimeSheet | None:
    result = await db.execute(
        select(TimeSheet).where(TimeSheet.id == time_sheet_id, TimeSheet.is_deleted == False)
    )
    return result.scalar_one_or_none()


async def get_timesheet_locked(db: AsyncSession, time_sheet_id: uuid.UUID) -> TimeSheet:
    """Row-level lock for state transitions."""
    result = await db.execute(
        select(TimeSheet)
        .where(TimeSheet.id == time_sheet_id, TimeSheet.is_deleted == False)
        .with_for_update()
    )
    sheet = result.scalar_one_or_none()
    if not sheet:
        raise NotFound("Time sheet not found")
    return sheet


async def view_timesheet(db: AsyncSession, principal: Principal, time_sheet_id: uuid.UUID) -> TimeSheet:
    sheet = await get_timesheet(db, time_sheet_id)
    if not sheet:
        raise NotFound("Time sheet not found")
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_VIEW)
    return sheet


async def list_timesheets(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    status: str | None = None,
) -> list[TimeSheet]:
    await require_project_permission(db, principal, project_id, ProjectPermission.TIME_SHEETS_VIEW)
    q = select(TimeSheet).where(TimeSheet.project_id == project_id, TimeSheet.is_deleted == False)
    if status:
        q = q.where(TimeSheet.status == status)
    result = await db.execute(q.order_by(TimeSheet.created_at.desc()))
    return list(result.scalars().all())


async def sheet_entries(db: AsyncSession, time_sheet_id: uuid.UUID) -> list[SheetEntryView]:
    result = await db.execute(
        select(TimeSheetEntry, TimeEntry)
        .join(TimeEntry, TimeEntry.id == TimeSheetEntry.time_entry_id)
        .where(TimeSheetEntry.time_sheet_id == time_sheet_id, TimeEntry.is_deleted == False)
        .order_by(TimeEntry.work_date.asc(), TimeSheetEntry.created_at.asc())
    )
    return [SheetEntryView(entry=entry, link=link) for link, entry in result.all()]


async def sheet_entry_statuses(db: AsyncSession, time_sheet_id: uuid.UUID) -> list[str]:
    return [view.entry.status for view in await sheet_entries(db, time_sheet_id)]


async def get_timesheet_with_entries(
    db: AsyncSession, principal: Principal, time_sheet_id: uuid.UUID,
) -> tuple[TimeSheet, list[SheetEntryView], float]:
    sheet = await view_timesheet(db, principal, time_sheet_id)
    views = await sheet_entries(db, sheet.id)
    total_hours = sum(v.entry.hours for v in views)
    return sheet, views, total_hours


async def available_entries(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
) -> list[TimeEntry]:
    """Project entries not already part of an approved sheet."""
    await require_project_permission(db, principal, project_id, ProjectPermission.TIME_ENTRIES_VIEW)
    in_approved = (
        select(TimeSheetEntry.time_entry_id)
        .join(TimeSheet, TimeSheet.id == TimeSheetEntry.time_sheet_id)
        .where(TimeSheet.status == "approved", TimeSheet.is_deleted == False)
    )
    result = await db.execute(
        select(TimeEntry)
        .where(
            TimeEntry.project_id == project_id,
            TimeEntry.is_deleted == False,
            TimeEntry.id.not_in(in_approved),
        )
        .order_by(TimeEntry.work_date.desc())
    )
    return list(result.scalars().all())


# ── Draft editing ─────────────────────────────────────────────────────────────

async def create_timesheet(
    db: AsyncSession,
    principal: Principal,
    data: TimeSheetCreate,
    now: datetime | None = None,
) -> TimeSheet:
    await require_project_permission(db, principal, data.project_id, ProjectPermission.TIME_SHEETS_CREATE)
    sheet = TimeSheet(
        title=data.title,
        description=data.description,
        start_date=data.start_date,
        end_date=data.end_date,
        project_id=data.project_id,
        organisation_id=data.organisation_id,
        account_id=data.account_id,
        status="draft",
        created_by=principal.id,
    )
    db.add(sheet)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=data.project_id,
        action="timesheet.create", resource_type="time_sheet",
        resource_id=str(sheet.id), detail={"title": data.title},
    )
    if data.entry_ids:
        await _link_entries(db, sheet, data.entry_ids, now or datetime.now(timezone.utc))
    await db.refresh(sheet)
    return sheet


async def update_timesheet(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
    data: TimeSheetUpdate,
) -> TimeSheet:
    sheet = await get_timesheet_locked(db, time_sheet_id)
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_EDIT)
    if sheet.status not in EDITABLE_STATUSES:
        raise InvalidStateTransition(f"Cannot edit time sheet with status '{sheet.status}'")
    for field_name, value in data.model_dump(exclude_none=True).items():
        setattr(sheet, field_name, value)
    if sheet.start_date and sheet.end_date and sheet.end_date < sheet.start_date:
        raise InvalidRequest("end_date must not be before start_date")
    await db.flush()
    await db.refresh(sheet)
    return sheet


async def delete_timesheet(db: AsyncSession, principal: Principal, time_sheet_id: uuid.UUID) -> None:
    sheet = await get_timesheet_locked(db, time_sheet_id)
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_EDIT)
    if sheet.status not in EDITABLE_STATUSES:
        raise InvalidStateTransition(f"Cannot delete time sheet with status '{sheet.status}'")
    sheet.is_deleted = True
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=sheet.project_id,
        action="timesheet.delete", resource_type="time_sheet", resource_id=str(sheet.id),
    )


async def _link_entries(
    db: AsyncSession,
    sheet: TimeSheet,
    entry_ids: list[uuid.UUID],
    at: datetime,
) -> list[TimeSheetEntry]:
    if len(set(entry_ids)) != len(entry_ids):
        raise InvalidRequest("entry_ids contains duplicates")
    existing = await db.execute(
        select(TimeSheetEntry.time_entry_id).where(TimeSheetEntry.time_sheet_id == sheet.id)
    )
    already = set(existing.scalars().all())

    links = []
    for entry_id in entry_ids:
        result = await db.execute(select(TimeEntry).where(TimeEntry.id == entry_id, TimeEntry.is_deleted == False))
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFound(f"Time entry {entry_id} not found")
        if sheet.project_id is not None and entry.project_id != sheet.project_id:
            raise InvalidRequest(f"Time entry {entry_id} belongs to another project")
        if entry_id in already:
            raise ConflictingUniqueness(f"Time entry {entry_id} is already in this time sheet")
        approved_elsewhere = await db.execute(
            select(TimeSheetEntry.id)
            .join(TimeSheet, TimeSheet.id == TimeSheetEntry.time_sheet_id)
            .where(TimeSheetEntry.time_entry_id == entry_id, TimeSheet.status == "approved")
        )
        if approved_elsewhere.first() is not None:
            raise InvalidStateTransition(f"Time entry {entry_id} is already in an approved time sheet")

        link = TimeSheetEntry(
            time_sheet_id=sheet.id,
            time_entry_id=entry.id,
            entry_edited_at=entry.edited_at or entry.created_at,
            created_at=at,
        )
        db.add(link)
        links.append(link)
    await db.flush()
    return links


async def add_entries(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
    entry_ids: list[uuid.UUID],
    now: datetime | None = None,
) -> list[TimeSheetEntry]:
    sheet = await get_timesheet_locked(db, time_sheet_id)
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_EDIT)
    if sheet.status not in EDITABLE_STATUSES:
        raise InvalidStateTransition(f"Cannot add entries to time sheet with status '{sheet.status}'")
    links = await _link_entries(db, sheet, entry_ids, now or datetime.now(timezone.utc))
    sheet.updated_at = now or datetime.now(timezone.utc)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=sheet.project_id,
        action="timesheet.add_entries", resource_type="time_sheet", resource_id=str(sheet.id),
        detail={"entry_ids": [str(e) for e in entry_ids]},
    )
    return links


async def remove_entry(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
    entry_id: uuid.UUID,
) -> None:
    sheet = await get_timesheet_locked(db, time_sheet_id)
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_EDIT)
    if sheet.status not in EDITABLE_STATUSES:
        raise InvalidStateTransition(f"Cannot remove entries from time sheet with status '{sheet.status}'")
    result = await db.execute(
        select(TimeSheetEntry).where(
            TimeSheetEntry.time_sheet_id == sheet.id,
            TimeSheetEntry.time_entry_id == entry_id,
        )
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFound("Time entry is not in this time sheet")
    await db.delete(link)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=sheet.project_id,
        action="timesheet.remove_entry", resource_type="time_sheet", resource_id=str(sheet.id),
        detail={"entry_id": str(entry_id)},
    )


# ── State machine ─────────────────────────────────────────────────────────────

async def submit_timesheet(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
    now: datetime | None = None,
) -> TimeSheet:
    sheet = await get_timesheet_locked(db, time_sheet_id)
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_SUBMIT)
    if sheet.status != "draft":
        raise InvalidStateTransition(f"Cannot submit time sheet with status '{sheet.status}'")
    if not await sheet_entries(db, sheet.id):
        raise PolicyNotSatisfied("Cannot submit an empty time sheet")

    at = now or datetime.now(timezone.utc)
    sheet.status = "submitted"
    sheet.submitted_date = at
    sheet.submitted_by = principal.id
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=sheet.project_id,
        action="timesheet.submit", resource_type="time_sheet",
        resource_id=str(sheet.id), detail={}, at=at,
    )
    logger.info("sheet %s submitted by %s", sheet.id, principal.id,
                extra={"principal_id": principal.id, "project_id": sheet.project_id, "event_type": "timesheet.submit"})
    await db.refresh(sheet)
    return sheet


async def mark_sheet_approved(
    db: AsyncSession,
    sheet: TimeSheet,
    actor_id: uuid.UUID | None,
    at: datetime,
    via: str = "user",
) -> TimeSheet:
    """Write the approval. Callers hold the row lock and have checked the policy."""
    sheet.status = "approved"
    sheet.approved_date = at
    sheet.approved_by = actor_id
    rows = await db.execute(select(TimeSheetEntry).where(TimeSheetEntry.time_sheet_id == sheet.id))
    for row in rows.scalars().all():
        row.approved_at = at
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=actor_id, project_id=sheet.project_id,
        action="timesheet.approve", resource_type="time_sheet",
        resource_id=str(sheet.id), detail={"via": via}, at=at,
    )
    logger.info("sheet %s approved by %s", sheet.id, actor_id or "system",
                extra={"project_id": sheet.project_id, "event_type": "timesheet.approve"})
    return sheet


async def _is_self_approval(db: AsyncSession, principal: Principal, sheet: TimeSheet, policy) -> bool:
    if sheet.created_by != principal.id:
        return False
    if not policy.self_approval_allowed(await project_has_client(db, sheet.project_id)):
        return False
    return await check_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_SUBMIT)


async def _authorize_approver(db: AsyncSession, principal: Principal, sheet: TimeSheet, policy) -> bool:
    """Returns True when the approval is a creator's self-approval."""
    require_active(principal)
    if await _is_self_approval(db, principal, sheet, policy):
        return True
    if await check_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_APPROVE):
        return False
    logger.warning("principal %s denied approving sheet %s", principal.id, sheet.id)
    raise Unauthorized(f"Missing permission '{ProjectPermission.TIME_SHEETS_APPROVE.value}'")


async def approve_timesheet(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
    now: datetime | None = None,
) -> TimeSheet:
    sheet = await get_timesheet_locked(db, time_sheet_id)
    policy = await resolve_policy(db, sheet.project_id)
    self_approval = await _authorize_approver(db, principal, sheet, policy)

    if sheet.status != "submitted":
        raise InvalidStateTransition(f"Cannot approve time sheet with status '{sheet.status}'")

    states = stage_states(policy, await list_stage_approvals(db, sheet.id))
    check = check_completion(policy, await sheet_entry_statuses(db, sheet.id), states, self_approval=self_approval)
    if not check.satisfied:
        logger.info("sheet %s approval blocked: %s", sheet.id, "; ".join(check.blockers))
        raise PolicyNotSatisfied("Approval policy not satisfied: " + "; ".join(check.blockers), blockers=check.blockers)

    await mark_sheet_approved(db, sheet, principal.id, now or datetime.now(timezone.utc),
                              via="self_approve" if self_approval else "user")
    await db.refresh(sheet)
    return sheet


async def reject_timesheet(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
    reason: str,
    now: datetime | None = None,
) -> TimeSheet:
    sheet = await get_timesheet_locked(db, time_sheet_id)
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_APPROVE)
    if sheet.status != "submitted":
        raise InvalidStateTransition(f"Cannot reject time sheet with status '{sheet.status}'")
    if not reason or not reason.strip():
        raise InvalidRequest("A rejection reason is required")

    at = now or datetime.now(timezone.utc)
    sheet.status = "rejected"
    sheet.rejected_date = at
    sheet.rejected_by = principal.id
    sheet.rejection_reason = reason.strip()
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=sheet.project_id,
        action="timesheet.reject", resource_type="time_sheet",
        resource_id=str(sheet.id), detail={"reason": sheet.rejection_reason}, at=at,
    )
    logger.info("sheet %s rejected by %s", sheet.id, principal.id)
    await db.refresh(sheet)
    return sheet


async def revert_to_draft(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
) -> TimeSheet:
    """Explicit way back to draft; stage sign-offs and per-sheet approval marks are cleared."""
    sheet = await get_timesheet_locked(db, time_sheet_id)
    await require_project_permission(db, principal, sheet.project_id, ProjectPermission.TIME_SHEETS_EDIT)
    if sheet.status not in REVERTIBLE_STATUSES:
        raise InvalidStateTransition(f"Cannot revert time sheet with status '{sheet.status}' to draft")

    previous = sheet.status
    sheet.status = "draft"
    sheet.submitted_date = None
    sheet.submitted_by = None
    sheet.approved_date = None
    sheet.approved_by = None
    sheet.rejected_date = None
    sheet.rejected_by = None
    sheet.rejection_reason = None
    await clear_stage_approvals(db, sheet.id)
    rows = await db.execute(select(TimeSheetEntry).where(TimeSheetEntry.time_sheet_id == sheet.id))
    for row in rows.scalars().all():
        row.approved_at = None
        row.last_stage = None
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=sheet.project_id,
        action="timesheet.revert", resource_type="time_sheet",
        resource_id=str(sheet.id), detail={"from": previous},
    )
    await db.refresh(sheet)
    return sheet


async def approval_status(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
) -> ApprovalStatus:
    """The sheet's derived view: stage progress, entry counts, what still blocks approval."""
    sheet = await view_timesheet(db, principal, time_sheet_id)
    policy = await resolve_policy(db, sheet.project_id)
    views = await sheet_entries(db, sheet.id)
    statuses = [v.entry.status for v in views]
    states = stage_states(policy, await list_stage_approvals(db, sheet.id))
    self_approval = await _is_self_approval(db, principal, sheet, policy)
    check = check_completion(policy, statuses, states, self_approval=self_approval)
    due = next_stage(states)
    return ApprovalStatus(
        time_sheet=sheet,
        approval_mode=policy.mode,
        stages=states,
        next_stage=due.value if due else None,
        entry_counts={s.value: statuses.count(s.value) for s in EntryStatus},
        blockers=check.blockers,
        stale_entry_ids=[v.entry.id for v in views if v.stale_entry],
    )
