"""
Invitation & Contact Linker.

An invitation carries an optional project grant (project_id + role) for a
contact. Reading by code is pure: expired invitations read as absent and are
only written as expired by expire_stale_invitations(). Acceptance runs under
a row lock on the invitation and applies its side effects exactly once.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.invitations.models import Contact, Invitation, Pii
from timegate.core.invitations.schemas import ContactCreate, InvitationCreate
from timegate.core.rbac.models import ProjectMembership
from timegate.core.rbac.permissions import ProjectPermission, ProjectRole, is_system_role
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import ensure_membership, require_active, require_project_permission
from timegate.db.base import as_utc
from timegate.errors import ConflictingUniqueness, InvalidRequest, InvalidStateTransition, NotFound, Unauthorized
from timegate.settings import get_settings

logger = logging.getLogger(__name__)


def generate_code(length: int | None = None) -> str:
    """URL-safe code of exactly `length` characters."""
    length = length or get_settings().INVITATION_CODE_LENGTH
    return secrets.token_urlsafe(length)[:length]


# ── Contacts ──────────────────────────────────────────────────────────────────

async def create_contact(db: AsyncSession, principal: Principal, data: ContactCreate) -> Contact:
    require_active(principal)
    email = data.email.lower()
    existing = await db.execute(
        select(Contact).where(Contact.owner_id == principal.id, Contact.email == email)
    )
    if existing.scalar_one_or_none():
        raise ConflictingUniqueness("A contact with this email already exists")

    pii_id = None
    if data.name or data.phone or data.address or data.notes:
        pii = Pii(name=data.name, phone=data.phone, address=data.address, notes=data.notes)
        db.add(pii)
        await db.flush()
        pii_id = pii.id

    contact = Contact(
        owner_id=principal.id,
        email=email,
        pii_id=pii_id,
        organisation_id=data.organisation_id,
    )
    db.add(contact)
    await db.flush()
    await db.refresh(contact)
    return contact


async def list_contacts(db: AsyncSession, principal: Principal) -> list[Contact]:
    require_active(principal)
    result = await db.execute(
        select(Contact).where(Contact.owner_id == principal.id).order_by(Contact.email)
    )
    return list(result.scalars().all())


async def get_contact(db: AsyncSession, principal: Principal, contact_id: uuid.UUID) -> Contact:
    """Contacts are private to their owner; anyone else gets NotFound."""
    require_active(principal)
    result = await db.execute(select(Contact).where(Contact.id == contact_id))
    contact = result.scalar_one_or_none()
    if not contact or (contact.owner_id != principal.id and not is_system_role(principal.system_role)):
        raise NotFound("Contact not found")
    return contact


async def get_contact_pii(db: AsyncSession, contact: Contact) -> Pii | None:
    if contact.pii_id is None:
        return None
    result = await db.execute(select(Pii).where(Pii.id == contact.pii_id))
    return result.scalar_one_or_none()


async def link_contact_to_user(db: AsyncSession, contact: Contact, user_id: uuid.UUID) -> Contact:
    """The user record owns identity from here on, so the contact's PII is dropped."""
    contact.user_id = user_id
    pii_id, contact.pii_id = contact.pii_id, None
    await db.flush()
    if pii_id is not None:
        result = await db.execute(select(Pii).where(Pii.id == pii_id))
        pii = result.scalar_one_or_none()
        if pii:
            await db.delete(pii)
            await db.flush()
    return contact


# ── Invitations ───────────────────────────────────────────────────────────────

async def _insert_with_unique_code(db: AsyncSession, invitation: Invitation) -> Invitation:
    settings = get_settings()
    for attempt in range(settings.INVITATION_CODE_ATTEMPTS):
        invitation.code = generate_code(settings.INVITATION_CODE_LENGTH)
        try:
            async with db.begin_nested():
                db.add(invitation)
                await db.flush()
            return invitation
        except IntegrityError:
            logger.warning("invitation code collision (attempt %d)", attempt + 1)
    raise ConflictingUniqueness("Could not generate a unique invitation code")


async def create_invitation(
    db: AsyncSession,
    principal: Principal,
    data: InvitationCreate,
    now: datetime | None = None,
) -> Invitation:
    contact = await get_contact(db, principal, data.contact_id)
    if data.project_id is not None:
        await require_project_permission(db, principal, data.project_id, ProjectPermission.CONTACTS_INVITE)
        if data.role is None:
            raise InvalidRequest("An invitation to a project needs a role")
        if data.role == ProjectRole.OWNER:
            # handing out ownership is member management
            await require_project_permission(db, principal, data.project_id, ProjectPermission.PROJECT_MANAGE_MEMBERS)

    q = select(Invitation.id).where(Invitation.contact_id == contact.id, Invitation.status == "pending")
    if data.project_id is not None:
        q = q.where(Invitation.project_id == data.project_id)
    else:
        q = q.where(Invitation.project_id.is_(None))
    if (await db.execute(q.limit(1))).first() is not None:
        raise ConflictingUniqueness("A pending invitation already exists for this contact")

    now = now or datetime.now(timezone.utc)
    invitation = Invitation(
        contact_id=contact.id,
        invited_by=principal.id,
        project_id=data.project_id,
        role=data.role.value if data.role else None,
        expires_at=now + timedelta(days=get_settings().INVITATION_EXPIRY_DAYS),
        status="pending",
        created_at=now,
    )
    await _insert_with_unique_code(db, invitation)

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=data.project_id,
        action="invitation.create", resource_type="invitation", resource_id=str(invitation.id),
        detail={"contact_id": str(contact.id), "role": invitation.role}, at=now,
    )
    logger.info("invitation %s created by %s", invitation.id, principal.id,
                extra={"principal_id": principal.id, "project_id": data.project_id, "event_type": "invitation.create"})
    await db.refresh(invitation)
    return invitation


async def find_by_code(db: AsyncSession, code: str) -> Invitation | None:
    result = await db.execute(select(Invitation).where(Invitation.code == code))
    return result.scalar_one_or_none()


async def find_valid_by_code(db: AsyncSession, code: str, now: datetime | None = None) -> Invitation | None:
    """Pending and unexpired, otherwise None. Never writes."""
    invitation = await find_by_code(db, code)
    if invitation is None or invitation.status != "pending":
        return None
    if as_utc(invitation.expires_at) <= (now or datetime.now(timezone.utc)):
        return None
    return invitation


async def accept_invitation(
    db: AsyncSession,
    principal: Principal,
    code: str,
    now: datetime | None = None,
) -> tuple[Invitation, ProjectMembership | None, bool]:
    """
    Returns (invitation, membership, membership_created). Missing or expired
    codes raise NotFound; a code that was already used raises
    InvalidStateTransition and nothing else is written.
    """
    require_active(principal)
    now = now or datetime.now(timezone.utc)
    result = await db.execute(select(Invitation).where(Invitation.code == code).with_for_update())
    invitation = result.scalar_one_or_none()
    if invitation is None or invitation.status == "expired":
        raise NotFound("Invitation not found")
    if invitation.status != "pending":
        raise InvalidStateTransition("Invitation is not pending")
    if as_utc(invitation.expires_at) <= now:
        raise NotFound("Invitation not found")

    membership, created = None, False
    if invitation.project_id is not None and invitation.role:
        membership, created = await ensure_membership(db, invitation.project_id, principal.id, invitation.role)

    contact = (await db.execute(select(Contact).where(Contact.id == invitation.contact_id))).scalar_one()
    if contact.user_id is None:
        await link_contact_to_user(db, contact, principal.id)

    invitation.status = "accepted"
    invitation.accepted_by = principal.id
    invitation.accepted_at = now
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=invitation.project_id,
        action="invitation.accept", resource_type="invitation", resource_id=str(invitation.id),
        detail={"membership_created": created, "role": invitation.role}, at=now,
    )
    logger.info("invitation %s accepted by %s", invitation.id, principal.id,
                extra={"principal_id": principal.id, "project_id": invitation.project_id, "event_type": "invitation.accept"})
    return invitation, membership, created


async def list_sent(db: AsyncSession, principal: Principal) -> list[Invitation]:
    require_active(principal)
    result = await db.execute(
        select(Invitation).where(Invitation.invited_by == principal.id).order_by(Invitation.created_at.desc())
    )
    return list(result.scalars().all())


async def find_pending_for_contact(
    db: AsyncSession,
    principal: Principal,
    contact_id: uuid.UUID,
    now: datetime | None = None,
) -> list[Invitation]:
    contact = await get_contact(db, principal, contact_id)
    result = await db.execute(
        select(Invitation).where(
            Invitation.contact_id == contact.id,
            Invitation.status == "pending",
            Invitation.expires_at > (now or datetime.now(timezone.utc)),
        )
    )
    return list(result.scalars().all())


async def revoke_invitation(db: AsyncSession, principal: Principal, invitation_id: uuid.UUID) -> None:
    require_active(principal)
    result = await db.execute(select(Invitation).where(Invitation.id == invitation_id).with_for_update())
    invitation = result.scalar_one_or_none()
    if not invitation:
        raise NotFound("Invitation not found")
    if invitation.invited_by != principal.id and not is_system_role(principal.system_role):
        raise Unauthorized("Only the inviter can revoke an invitation")
    if invitation.status != "pending":
        raise InvalidStateTransition(f"Cannot revoke invitation with status '{invitation.status}'")
    await db.delete(invitation)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=invitation.project_id,
        action="invitation.revoke", resource_type="invitation", resource_id=str(invitation.id),
    )


async def expire_stale_invitations(db: AsyncSession, now: datetime | None = None) -> int:
    """Mark pending invitations past expires_at as expired. Safe to re-run."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(Invitation)
        .where(Invitation.status == "pending", Invitation.expires_at <= now)
        .with_for_update()
    )
    expired = 0
    for invitation in result.scalars().all():
        invitation.status = "expired"
        expired += 1

        from timegate.core.audit.service import audit
        await audit(db, user_id=None, project_id=invitation.project_id,
            action="invitation.expire", resource_type="invitation", resource_id=str(invitation.id), at=now,
        )
    await db.flush()
    if expired:
        logger.info("expired %d invitations", expired, extra={"event_type": "sweep.invitations"})
    return expired
