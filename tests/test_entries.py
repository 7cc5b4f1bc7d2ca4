from datetime import datetime, timedelta, timezone

import pytest

from timegate.core.entries import service
from timegate.core.entries.models import EntryStatus
from timegate.core.entries.schemas import EntryMessageCreate, EntryMessageUpdate, TimeEntryUpdate
from timegate.core.rbac.permissions import ProjectRole
from timegate.errors import InvalidStateTransition, NotFound, Unauthorized


async def test_new_entry_is_pending(owner, make_entry):
    entry = await make_entry(owner)
    assert entry.status == EntryStatus.PENDING.value
    assert entry.status_changed_at is None
    assert entry.created_by == owner.id


async def test_approve_by_message_records_actor(db, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    client = await add_member("client@timegate.io", ProjectRole.CLIENT)
    entry = await make_entry(expert)
    at = datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)

    message = await service.post_message(
        db, client, entry.id, EntryMessageCreate(content="Looks right", status_change="approved"), now=at,
    )

    entry = await service.get_entry(db, entry.id)
    assert entry.status == "approved"
    assert entry.status_changed_by == client.id
    assert message.status_change == "approved"
    assert message.author_id == client.id


async def test_unauthorized_status_change_leaves_no_trace(db, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)

    with pytest.raises(Unauthorized):
        await service.post_message(
            db, expert, entry.id, EntryMessageCreate(content="approving my own", status_change="approved"),
        )

    entry = await service.get_entry(db, entry.id)
    assert entry.status == "pending"
    assert entry.status_changed_by is None
    assert await service.count_messages(db, entry.id) == 0


async def test_plain_comment_does_not_touch_status(db, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)
    await service.post_message(db, expert, entry.id, EntryMessageCreate(content="Note for the client"))

    entry = await service.get_entry(db, entry.id)
    assert entry.status == "pending"
    assert await service.count_messages(db, entry.id) == 1


async def test_viewer_cannot_comment(db, add_member, make_entry, owner):
    viewer = await add_member("viewer@timegate.io", ProjectRole.VIEWER)
    entry = await make_entry(owner)
    with pytest.raises(Unauthorized):
        await service.post_message(db, viewer, entry.id, EntryMessageCreate(content="hi"))


async def test_question_then_approve(db, owner, add_member, make_entry):
    reviewer = await add_member("reviewer@timegate.io", ProjectRole.REVIEWER)
    entry = await make_entry(owner)
    at = datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)
    await service.post_message(
        db, reviewer, entry.id, EntryMessageCreate(content="Why 2h?", status_change="questioned"), now=at,
    )
    assert (await service.get_entry(db, entry.id)).status == "questioned"
    await service.post_message(
        db, reviewer, entry.id, EntryMessageCreate(content="ok", status_change="approved"), now=at + timedelta(hours=1),
    )
    assert (await service.get_entry(db, entry.id)).status == "approved"

    thread = await service.list_thread(db, reviewer, entry.id)
    assert [m.status_change for m in thread] == ["questioned", "approved"]


async def test_reply_must_belong_to_same_entry(db, owner, make_entry):
    first = await make_entry(owner)
    second = await make_entry(owner, title="Other")
    parent = await service.post_message(db, owner, first.id, EntryMessageCreate(content="root"))

    reply = await service.post_message(
        db, owner, first.id, EntryMessageCreate(content="reply", parent_message_id=parent.id),
    )
    assert reply.parent_message_id == parent.id
    with pytest.raises(NotFound):
        await service.post_message(
            db, owner, second.id, EntryMessageCreate(content="stray", parent_message_id=parent.id),
        )


async def test_soft_deleted_message_hidden_but_auditable(db, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)
    mine = await service.post_message(db, expert, entry.id, EntryMessageCreate(content="typo"))
    theirs = await service.post_message(db, owner, entry.id, EntryMessageCreate(content="owner note"))

    with pytest.raises(Unauthorized):
        await service.delete_message(db, expert, theirs.id)
    await service.delete_message(db, expert, mine.id)

    visible = await service.list_thread(db, expert, entry.id)
    audit = await service.list_thread(db, owner, entry.id, include_deleted=True)
    assert [m.id for m in visible] == [theirs.id]
    assert {m.id for m in audit} == {mine.id, theirs.id}
    assert await service.count_messages(db, entry.id) == 1
    assert (await service.latest_message(db, entry.id)).id == theirs.id


async def test_only_author_edits_message(db, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)
    message = await service.post_message(db, expert, entry.id, EntryMessageCreate(content="draft"))
    with pytest.raises(Unauthorized):
        await service.edit_message(db, owner, message.id, EntryMessageUpdate(content="hijack"))
    edited = await service.edit_message(db, expert, message.id, EntryMessageUpdate(content="final"))
    assert edited.content == "final"


async def test_edit_own_requires_ownership(db, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    other = await add_member("expert2@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)
    at = datetime(2026, 3, 4, tzinfo=timezone.utc)

    with pytest.raises(Unauthorized):
        await service.update_entry(db, other, entry.id, TimeEntryUpdate(hours=3))
    updated = await service.update_entry(db, expert, entry.id, TimeEntryUpdate(hours=3), now=at)
    assert updated.hours == 3
    assert updated.edited_at is not None
    # edit-all needs no ownership
    await service.update_entry(db, owner, entry.id, TimeEntryUpdate(title="Renamed"))


async def test_admin_status_edit_back_to_pending(db, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)
    await service.post_message(db, owner, entry.id, EntryMessageCreate(content="ok", status_change="approved"))

    with pytest.raises(Unauthorized):
        await service.set_entry_status(db, expert, entry.id, EntryStatus.PENDING)
    entry = await service.set_entry_status(db, owner, entry.id, EntryStatus.PENDING)
    assert entry.status == "pending"
    assert entry.status_changed_by == owner.id


async def test_pending_is_not_a_message_action(db, owner, make_entry):
    entry = await make_entry(owner)
    data = EntryMessageCreate.model_construct(content="reset", parent_message_id=None, status_change="pending")
    with pytest.raises(InvalidStateTransition):
        await service.post_message(db, owner, entry.id, data)
    assert await service.count_messages(db, entry.id) == 0


async def test_delete_entry_soft(db, owner, add_member, make_entry):
    expert = await add_member("expert@timegate.io", ProjectRole.EXPERT)
    entry = await make_entry(expert)
    await service.delete_entry(db, expert, entry.id)
    assert await service.get_entry(db, entry.id) is None
    assert await service.list_entries(db, owner, entry.project_id) == []


async def test_entries_hidden_from_non_members(db, make_user, project, owner, make_entry):
    stranger = await make_user("stranger@timegate.io")
    entry = await make_entry(owner)
    with pytest.raises(Unauthorized):
        await service.view_entry(db, stranger, entry.id)
    admin = await make_user("admin@timegate.io", system_role="admin")
    assert (await service.view_entry(db, admin, entry.id)).id == entry.id
