import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.approvals.models import ProjectApprovalSettings, TimeSheetApproval
from timegate.core.approvals.policy import (
    ApprovalMode, ApprovalPolicy, check_completion, next_stage, stage_states, validate_stages,
)
from timegate.core.approvals.schemas import ApprovalSettingsUpdate, StageApprovalCreate
from timegate.core.entries.models import EntryMessage, EntryStatus, TimeEntry
from timegate.core.projects.models import Project
from timegate.core.rbac.models import ProjectMembership
from timegate.core.rbac.permissions import ProjectPermission, ProjectRole, is_system_role
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import get_membership, require_active, require_project_permission
from timegate.core.timesheets.models import TimeSheet, TimeSheetEntry
from timegate.db.base import as_utc
from timegate.errors import (
    InvalidRequest, InvalidStateTransition, PolicyNotSatisfied, Unauthorized,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "approval_mode": ApprovalMode.REQUIRED.value,
    "approval_stages": None,
    "auto_approve_after_days": 0,
    "require_all_entries_approved": True,
    "allow_self_approve_no_client": False,
}


# ── Settings ──────────────────────────────────────────────────────────────────

async def find_settings(db: AsyncSession, project_id: uuid.UUID) -> ProjectApprovalSettings | None:
    result = await db.execute(
        select(ProjectApprovalSettings).where(ProjectApprovalSettings.project_id == project_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_settings(db: AsyncSession, project_id: uuid.UUID) -> ProjectApprovalSettings:
    settings = await find_settings(db, project_id)
    if settings:
        return settings
    settings = ProjectApprovalSettings(project_id=project_id, **DEFAULT_SETTINGS)
    db.add(settings)
    await db.flush()
    await db.refresh(settings)
    return settings


async def get_settings(db: AsyncSession, principal: Principal, project_id: uuid.UUID) -> ProjectApprovalSettings:
    await require_project_permission(db, principal, project_id, ProjectPermission.APPROVAL_SETTINGS_VIEW)
    return await get_or_create_settings(db, project_id)


async def update_settings(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    data: ApprovalSettingsUpdate,
) -> ProjectApprovalSettings:
    await require_project_permission(db, principal, project_id, ProjectPermission.APPROVAL_SETTINGS_EDIT)
    settings = await get_or_create_settings(db, project_id)
    changes = data.model_dump(exclude_unset=True)

    mode = ApprovalMode(changes.get("approval_mode") or settings.approval_mode)
    stages = changes["approval_stages"] if "approval_stages" in changes else settings.approval_stages
    try:
        roles = validate_stages(mode, stages)
    except ValueError as e:
        raise InvalidRequest(str(e))

    for field in ("auto_approve_after_days", "require_all_entries_approved", "allow_self_approve_no_client"):
        if changes.get(field) is not None:
            setattr(settings, field, changes[field])
    settings.approval_mode = mode.value
    settings.approval_stages = [r.value for r in roles] or None
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=project_id,
        action="approval_settings.update", resource_type="project_approval_settings",
        resource_id=str(settings.id),
        detail={
            "approval_mode": settings.approval_mode,
            "approval_stages": settings.approval_stages,
            "auto_approve_after_days": settings.auto_approve_after_days,
        },
    )
    logger.info("approval settings for project %s set to %s", project_id, settings.approval_mode)
    await db.refresh(settings)
    return settings


async def resolve_policy(db: AsyncSession, project_id: uuid.UUID | None) -> ApprovalPolicy:
    """Sheets outside any project fall back to the default (required) policy."""
    if project_id is None:
        return ApprovalPolicy(project_id=None, mode=ApprovalMode.REQUIRED)
    return ApprovalPolicy.from_settings(await get_or_create_settings(db, project_id))


async def project_has_client(db: AsyncSession, project_id: uuid.UUID | None) -> bool:
    if project_id is None:
        return False
    result = await db.execute(
        select(func.count(ProjectMembership.id)).where(
            ProjectMembership.project_id == project_id,
            ProjectMembership.role == ProjectRole.CLIENT.value,
        )
    )
    return (result.scalar_one() or 0) > 0


# ── Stage approvals ───────────────────────────────────────────────────────────

async def list_stage_approvals(db: AsyncSession, time_sheet_id: uuid.UUID) -> list[TimeSheetApproval]:
    result = await db.execute(
        select(TimeSheetApproval)
        .where(TimeSheetApproval.time_sheet_id == time_sheet_id)
        .order_by(TimeSheetApproval.approved_at.asc())
    )
    return list(result.scalars().all())


async def clear_stage_approvals(db: AsyncSession, time_sheet_id: uuid.UUID) -> None:
    for approval in await list_stage_approvals(db, time_sheet_id):
        await db.delete(approval)
    await db.flush()


async def approve_stage(
    db: AsyncSession,
    principal: Principal,
    time_sheet_id: uuid.UUID,
    data: StageApprovalCreate,
    now: datetime | None = None,
) -> TimeSheetApproval:
    """
    Record one stage sign-off. The principal must hold the stage's role on the
    project (system admins excepted) and the stage must be the next one due.
    """
    from timegate.core.timesheets.service import get_timesheet_locked
    sheet = await get_timesheet_locked(db, time_sheet_id)
    require_active(principal)

    membership = await get_membership(db, sheet.project_id, principal.id) if sheet.project_id else None
    if not is_system_role(principal.system_role):
        if membership is None or membership.role != data.stage.value:
            logger.warning("principal %s cannot sign stage %s on sheet %s", principal.id, data.stage.value, sheet.id)
            raise Unauthorized(f"Stage '{data.stage.value}' must be approved by a project {data.stage.value}")

    if sheet.status != "submitted":
        raise InvalidStateTransition(f"Cannot approve a stage of a time sheet with status '{sheet.status}'")

    policy = await resolve_policy(db, sheet.project_id)
    if policy.mode != ApprovalMode.MULTI_STAGE:
        raise InvalidStateTransition("Project does not use multi-stage approval")
    if data.stage not in policy.stages:
        raise InvalidRequest(f"'{data.stage.value}' is not an approval stage of this project")

    states = stage_states(policy, await list_stage_approvals(db, sheet.id))
    due = next_stage(states)
    if any(s.stage == data.stage and s.satisfied for s in states):
        raise InvalidStateTransition(f"Stage '{data.stage.value}' is already approved")
    if due != data.stage:
        raise PolicyNotSatisfied(f"Stage '{due.value}' must be approved before '{data.stage.value}'")

    at = now or datetime.now(timezone.utc)
    approval = TimeSheetApproval(
        time_sheet_id=sheet.id,
        stage=data.stage.value,
        approved_by=principal.id,
        approved_at=at,
        notes=data.notes,
    )
    db.add(approval)
    rows = await db.execute(select(TimeSheetEntry).where(TimeSheetEntry.time_sheet_id == sheet.id))
    for row in rows.scalars().all():
        row.last_stage = data.stage.value
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=sheet.project_id,
        action="timesheet.stage_approve", resource_type="time_sheet", resource_id=str(sheet.id),
        detail={"stage": data.stage.value}, at=at,
    )
    logger.info("sheet %s stage %s approved by %s", sheet.id, data.stage.value, principal.id)
    await db.refresh(approval)
    return approval


# ── Auto-approval sweep ───────────────────────────────────────────────────────

AUTO_APPROVE_MESSAGE = "Automatically approved after {days} days without questions."


@dataclass
class SweepReport:
    projects_scanned: int = 0
    entries_approved: int = 0
    sheets_approved: int = 0
    sheets_skipped: int = 0


async def _auto_approve_entries(db: AsyncSession, policy: ApprovalPolicy, now: datetime) -> int:
    cutoff = policy.auto_approve_cutoff(now)
    age_ref = func.coalesce(TimeEntry.status_changed_at, TimeEntry.created_at)
    result = await db.execute(
        select(TimeEntry.id).where(
            TimeEntry.project_id == policy.project_id,
            TimeEntry.status == EntryStatus.PENDING.value,
            TimeEntry.is_deleted == False,
            age_ref < cutoff,
        )
    )
    approved = 0
    for entry_id in result.scalars().all():
        locked = await db.execute(select(TimeEntry).where(TimeEntry.id == entry_id).with_for_update())
        entry = locked.scalar_one_or_none()
        # re-check under the lock; a user may have questioned or approved it meanwhile
        if entry is None or entry.is_deleted or entry.status != EntryStatus.PENDING.value:
            continue
        if as_utc(entry.status_changed_at or entry.created_at) >= cutoff:
            continue
        entry.status = EntryStatus.APPROVED.value
        entry.status_changed_at = now
        entry.status_changed_by = None
        db.add(EntryMessage(
            time_entry_id=entry.id,
            author_id=None,
            content=AUTO_APPROVE_MESSAGE.format(days=policy.auto_approve_after_days),
            status_change=EntryStatus.APPROVED.value,
            created_at=now,
            updated_at=now,
        ))
        await db.flush()

        from timegate.core.audit.service import audit
        await audit(db, user_id=None, project_id=policy.project_id,
            action="timeentry.status", resource_type="time_entry", resource_id=str(entry.id),
            detail={"from": EntryStatus.PENDING.value, "to": EntryStatus.APPROVED.value, "via": "auto_approve"},
            at=now,
        )
        approved += 1
    return approved


async def _auto_approve_sheets(db: AsyncSession, policy: ApprovalPolicy, now: datetime, report: SweepReport) -> None:
    from timegate.core.timesheets.service import mark_sheet_approved, sheet_entry_statuses

    cutoff = policy.auto_approve_cutoff(now)
    result = await db.execute(
        select(TimeSheet.id).where(
            TimeSheet.project_id == policy.project_id,
            TimeSheet.status == "submitted",
            TimeSheet.is_deleted == False,
            TimeSheet.submitted_date < cutoff,
        )
    )
    for sheet_id in result.scalars().all():
        locked = await db.execute(select(TimeSheet).where(TimeSheet.id == sheet_id).with_for_update())
        sheet = locked.scalar_one_or_none()
        if sheet is None or sheet.status != "submitted":
            continue
        statuses = await sheet_entry_statuses(db, sheet.id)
        if EntryStatus.QUESTIONED.value in statuses:
            report.sheets_skipped += 1
            logger.info("sheet %s not auto-approved: questioned entries", sheet.id)
            continue
        # entries still pending after the entry pass were not old enough
        check = check_completion(policy, statuses)
        if check.blockers:
            report.sheets_skipped += 1
            logger.info("sheet %s not auto-approved: %s", sheet.id, "; ".join(check.blockers))
            continue
        await mark_sheet_approved(db, sheet, None, now, via="auto_approve")
        report.sheets_approved += 1


async def run_auto_approval_sweep(db: AsyncSession, now: datetime | None = None) -> SweepReport:
    """
    Approve pending entries and submitted sheets older than each project's
    auto_approve_after_days. Idempotent: approved items are never selected
    again, and questioned entries are never touched.
    """
    now = now or datetime.now(timezone.utc)
    report = SweepReport()
    result = await db.execute(
        select(ProjectApprovalSettings)
        .join(Project, Project.id == ProjectApprovalSettings.project_id)
        .where(ProjectApprovalSettings.auto_approve_after_days > 0, Project.is_deleted == False)
    )
    # one policy per project for the whole sweep
    policies = [ApprovalPolicy.from_settings(s) for s in result.scalars().all()]
    for policy in policies:
        report.projects_scanned += 1
        report.entries_approved += await _auto_approve_entries(db, policy, now)
        await _auto_approve_sheets(db, policy, now, report)

    logger.info(
        "auto-approval sweep: %d projects, %d entries, %d sheets approved, %d sheets skipped",
        report.projects_scanned, report.entries_approved, report.sheets_approved, report.sheets_skipped,
        extra={"event_type": "sweep.auto_approve"},
    )
    return report
