from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from timegate.core.invitations import service
from timegate.core.invitations.models import Invitation, Pii
from timegate.core.invitations.schemas import ContactCreate, InvitationCreate
from timegate.core.rbac.models import ProjectMembership
from timegate.core.rbac.permissions import ProjectRole
from timegate.core.rbac.service import get_membership
from timegate.errors import ConflictingUniqueness, InvalidStateTransition, NotFound, Unauthorized

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
async def contact(db, owner):
    return await service.create_contact(db, owner, ContactCreate(
        email="Invitee@Client.io", name="Ada Client", phone="+47 555 0101",
    ))


async def invite(db, principal, contact, project, role=ProjectRole.EXPERT, now=T0):
    return await service.create_invitation(db, principal, InvitationCreate(
        contact_id=contact.id, project_id=project.id, role=role,
    ), now=now)


def test_generated_code_is_url_safe_and_twelve_chars():
    codes = {service.generate_code() for _ in range(50)}
    assert len(codes) == 50
    for code in codes:
        assert len(code) == 12
        assert all(c.isalnum() or c in "-_" for c in code)


async def test_contact_email_unique_per_owner(db, owner, contact):
    assert contact.email == "invitee@client.io"
    assert contact.pii_id is not None
    with pytest.raises(ConflictingUniqueness):
        await service.create_contact(db, owner, ContactCreate(email="invitee@client.io"))


async def test_create_then_find_valid(db, owner, project, contact):
    invitation = await invite(db, owner, contact, project)
    assert invitation.status == "pending"
    assert len(invitation.code) == 12
    assert invitation.expires_at.replace(tzinfo=timezone.utc) == T0 + timedelta(days=7)

    found = await service.find_valid_by_code(db, invitation.code, now=T0 + timedelta(minutes=1))
    assert found is not None
    assert found.id == invitation.id
    assert found.status == "pending"


async def test_expired_reads_as_absent_without_writing(db, owner, project, contact):
    invitation = await invite(db, owner, contact, project)
    later = T0 + timedelta(days=8)

    assert await service.find_valid_by_code(db, invitation.code, now=later) is None
    assert await service.find_valid_by_code(db, invitation.code, now=later) is None
    assert (await service.find_by_code(db, invitation.code)).status == "pending"

    assert await service.expire_stale_invitations(db, now=later) == 1
    assert await service.expire_stale_invitations(db, now=later) == 0
    assert (await service.find_by_code(db, invitation.code)).status == "expired"
    assert await service.find_valid_by_code(db, invitation.code, now=later) is None


async def test_unknown_code(db):
    assert await service.find_valid_by_code(db, "doesnotexist") is None


async def test_accept_twice_creates_one_membership(db, owner, project, contact, make_user):
    invitation = await invite(db, owner, contact, project)
    invitee = await make_user("invitee@client.io")

    accepted, membership, created = await service.accept_invitation(
        db, invitee, invitation.code, now=T0 + timedelta(days=1),
    )
    assert accepted.status == "accepted"
    assert created
    assert membership.role == "expert"

    with pytest.raises(InvalidStateTransition):
        await service.accept_invitation(db, invitee, invitation.code, now=T0 + timedelta(days=2))

    count = await db.execute(
        select(func.count(ProjectMembership.id)).where(
            ProjectMembership.project_id == project.id, ProjectMembership.user_id == invitee.id,
        )
    )
    assert count.scalar_one() == 1


async def test_accept_links_contact_and_drops_pii(db, owner, project, contact, make_user):
    invitation = await invite(db, owner, contact, project)
    invitee = await make_user("invitee@client.io")
    pii_id = contact.pii_id

    await service.accept_invitation(db, invitee, invitation.code, now=T0 + timedelta(hours=1))

    assert contact.user_id == invitee.id
    assert contact.pii_id is None
    assert (await db.execute(select(Pii).where(Pii.id == pii_id))).scalar_one_or_none() is None


async def test_accept_keeps_existing_membership(db, owner, project, contact, add_member):
    member = await add_member("invitee@client.io", ProjectRole.REVIEWER)
    invitation = await invite(db, owner, contact, project, role=ProjectRole.VIEWER)

    _, membership, created = await service.accept_invitation(db, member, invitation.code, now=T0)
    assert not created
    assert membership.role == "reviewer"


async def test_accept_expired_is_not_found(db, owner, project, contact, make_user):
    invitation = await invite(db, owner, contact, project)
    invitee = await make_user("invitee@client.io")
    with pytest.raises(NotFound):
        await service.accept_invitation(db, invitee, invitation.code, now=T0 + timedelta(days=7))
    assert await get_membership(db, project.id, invitee.id) is None


async def test_invitation_without_project_only_links(db, owner, contact, make_user):
    invitation = await service.create_invitation(db, owner, InvitationCreate(contact_id=contact.id), now=T0)
    invitee = await make_user("invitee@client.io")
    _, membership, created = await service.accept_invitation(db, invitee, invitation.code, now=T0)
    assert membership is None and not created
    assert contact.user_id == invitee.id


async def test_inviting_needs_contacts_invite(db, owner, project, add_member):
    reviewer = await add_member("reviewer@timegate.io", ProjectRole.REVIEWER)
    their_contact = await service.create_contact(db, reviewer, ContactCreate(email="friend@client.io"))
    with pytest.raises(Unauthorized):
        await invite(db, reviewer, their_contact, project)


async def test_contacts_are_private(db, owner, project, contact, add_member):
    client = await add_member("client@timegate.io", ProjectRole.CLIENT)
    with pytest.raises(NotFound):
        await invite(db, client, contact, project)


async def test_owner_grant_needs_member_management(db, project, add_member):
    client = await add_member("client@timegate.io", ProjectRole.CLIENT)
    their_contact = await service.create_contact(db, client, ContactCreate(email="boss@client.io"))
    with pytest.raises(Unauthorized):
        await invite(db, client, their_contact, project, role=ProjectRole.OWNER)
    invitation = await invite(db, client, their_contact, project, role=ProjectRole.CLIENT)
    assert invitation.role == "client"


async def test_one_pending_invitation_per_contact_and_project(db, owner, project, contact):
    await invite(db, owner, contact, project)
    with pytest.raises(ConflictingUniqueness):
        await invite(db, owner, contact, project)


async def test_revoke_pending(db, owner, project, contact, make_user):
    invitation = await invite(db, owner, contact, project)
    stranger = await make_user("stranger@timegate.io")
    with pytest.raises(Unauthorized):
        await service.revoke_invitation(db, stranger, invitation.id)
    await service.revoke_invitation(db, owner, invitation.id)
    assert await service.find_by_code(db, invitation.code) is None


async def test_listing(db, owner, project, contact):
    invitation = await invite(db, owner, contact, project)
    assert [i.id for i in await service.list_sent(db, owner)] == [invitation.id]
    pending = await service.find_pending_for_contact(db, owner, contact.id, now=T0)
    assert [i.id for i in pending] == [invitation.id]
    assert await service.find_pending_for_contact(db, owner, contact.id, now=T0 + timedelta(days=30)) == []
    assert [c.id for c in await service.list_contacts(db, owner)] == [contact.id]
    assert (await db.execute(select(func.count(Invitation.id)))).scalar_one() == 1


async def test_project_invitation_does_not_block_plain_link(db, owner, project, contact):
    await invite(db, owner, contact, project)
    plain = await service.create_invitation(db, owner, InvitationCreate(contact_id=contact.id), now=T0)
    assert plain.project_id is None
    with pytest.raises(ConflictingUniqueness):
        await service.create_invitation(db, owner, InvitationCreate(contact_id=contact.id), now=T0)


async def test_contact_pii_keeps_address(db, owner):
    contact = await service.create_contact(db, owner, ContactCreate(
        email="site@client.io", address="Storgata 1, Oslo",
    ))
    pii = await service.get_contact_pii(db, contact)
    assert pii.address == "Storgata 1, Oslo"
    assert pii.name is None
