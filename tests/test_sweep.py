from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from timegate.core.approvals.schemas import ApprovalSettingsUpdate
from timegate.core.approvals.service import run_auto_approval_sweep, update_settings
from timegate.core.audit.service import list_audit
from timegate.core.entries.models import EntryMessage, EntryStatus
from timegate.core.entries.schemas import EntryMessageCreate
from timegate.core.entries.service import get_entry, post_message, set_entry_status
from timegate.core.rbac.permissions import ProjectRole
from timegate.core.timesheets.schemas import TimeSheetCreate
from timegate.core.timesheets.service import create_timesheet, get_timesheet, submit_timesheet


@pytest.fixture
async def auto_project(db, owner, project):
    await update_settings(db, owner, project.id, ApprovalSettingsUpdate(auto_approve_after_days=3))
    return project


async def snapshot(db, entries, sheets):
    return (
        [(await get_entry(db, e.id)).status for e in entries],
        [(await get_timesheet(db, s.id)).status for s in sheets],
    )


async def test_sweep_approves_old_pending_entries_as_system(db, auto_project, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)
    now = datetime.now(timezone.utc) + timedelta(days=4)

    report = await run_auto_approval_sweep(db, now=now)

    assert report.projects_scanned == 1
    assert report.entries_approved == 1
    entry = await get_entry(db, entry.id)
    assert entry.status == "approved"
    assert entry.status_changed_by is None

    messages = (await db.execute(select(EntryMessage).where(EntryMessage.time_entry_id == entry.id))).scalars().all()
    assert len(messages) == 1
    assert messages[0].author_id is None
    assert messages[0].status_change == "approved"
    assert [a.user_id for a in await list_audit(db, "time_entry", str(entry.id))][-1] is None


async def test_sweep_leaves_young_entries(db, auto_project, owner, make_entry):
    entry = await make_entry(owner)
    report = await run_auto_approval_sweep(db, now=datetime.now(timezone.utc) + timedelta(days=1))
    assert report.entries_approved == 0
    assert (await get_entry(db, entry.id)).status == "pending"


async def test_sweep_never_approves_questioned(db, auto_project, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    questioned, plain = await make_entry(expert), await make_entry(expert)
    await post_message(db, owner, questioned.id, EntryMessageCreate(content="?", status_change="questioned"))
    sheet = await create_timesheet(db, expert, TimeSheetCreate(
        title="Week 10", project_id=auto_project.id, entry_ids=[questioned.id, plain.id],
    ))
    await submit_timesheet(db, expert, sheet.id)

    report = await run_auto_approval_sweep(db, now=datetime.now(timezone.utc) + timedelta(days=10))

    assert (await get_entry(db, questioned.id)).status == "questioned"
    assert (await get_entry(db, plain.id)).status == "approved"
    assert (await get_timesheet(db, sheet.id)).status == "submitted"
    assert report.sheets_skipped == 1
    assert report.sheets_approved == 0


async def test_sweep_twice_is_idempotent(db, auto_project, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entries = [await make_entry(expert), await make_entry(expert)]
    sheet = await create_timesheet(db, expert, TimeSheetCreate(
        title="Week 11", project_id=auto_project.id, entry_ids=[e.id for e in entries],
    ))
    await submit_timesheet(db, expert, sheet.id)
    now = datetime.now(timezone.utc) + timedelta(days=5)

    first = await run_auto_approval_sweep(db, now=now)
    after_first = await snapshot(db, entries, [sheet])
    second = await run_auto_approval_sweep(db, now=now)
    after_second = await snapshot(db, entries, [sheet])

    assert after_first == (["approved", "approved"], ["approved"])
    assert after_second == after_first
    assert (first.entries_approved, first.sheets_approved) == (2, 1)
    assert (second.entries_approved, second.sheets_approved) == (0, 0)
    sheet = await get_timesheet(db, sheet.id)
    assert sheet.approved_by is None


async def test_sweep_ignores_projects_without_timer(db, project, owner, make_entry):
    entry = await make_entry(owner)
    report = await run_auto_approval_sweep(db, now=datetime.now(timezone.utc) + timedelta(days=365))
    assert report.projects_scanned == 0
    assert (await get_entry(db, entry.id)).status == "pending"


async def reset_after_submit(db, owner, expert, make_entry, project, t0):
    entry = await make_entry(expert)
    await set_entry_status(db, owner, entry.id, EntryStatus.APPROVED, now=t0)
    sheet = await create_timesheet(db, expert, TimeSheetCreate(
        title="Week 12", project_id=project.id, entry_ids=[entry.id],
    ), now=t0)
    await submit_timesheet(db, expert, sheet.id, now=t0)
    await set_entry_status(db, owner, entry.id, EntryStatus.PENDING, now=t0 + timedelta(days=9))
    return entry, sheet


async def test_sweep_skips_sheet_with_recently_reset_entry(db, auto_project, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    t0 = datetime.now(timezone.utc)
    entry, sheet = await reset_after_submit(db, owner, expert, make_entry, auto_project, t0)

    report = await run_auto_approval_sweep(db, now=t0 + timedelta(days=10))

    assert report.entries_approved == 0
    assert report.sheets_approved == 0
    assert report.sheets_skipped == 1
    assert (await get_entry(db, entry.id)).status == "pending"
    assert (await get_timesheet(db, sheet.id)).status == "submitted"


async def test_sweep_optional_mode_approves_sheet_with_pending_entry(db, auto_project, owner, add_member, make_entry):
    await update_settings(db, owner, auto_project.id, ApprovalSettingsUpdate(approval_mode="optional"))
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    t0 = datetime.now(timezone.utc)
    entry, sheet = await reset_after_submit(db, owner, expert, make_entry, auto_project, t0)

    report = await run_auto_approval_sweep(db, now=t0 + timedelta(days=10))

    assert report.sheets_approved == 1
    assert (await get_entry(db, entry.id)).status == "pending"
    assert (await get_timesheet(db, sheet.id)).status == "approved"
