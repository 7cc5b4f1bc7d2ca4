import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.invitations import service
from timegate.core.invitations.schemas import (
    AcceptResult, ContactCreate, ContactRead, InvitationCreate, InvitationPreview, InvitationRead, PiiRead,
)
from timegate.core.rbac.principal import Principal
from timegate.dependencies import get_current_principal, get_db
from timegate.errors import NotFound

router = APIRouter(tags=["invitations"])


# ── Contacts ──────────────────────────────────────────────────────────────────

@router.get("/contacts", response_model=list[ContactRead])
async def list_contacts(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_contacts(db, principal)


@router.post("/contacts", response_model=ContactRead, status_code=201)
async def create_contact(
    data: ContactCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.create_contact(db, principal, data)


@router.get("/contacts/{contact_id}/pii", response_model=PiiRead | None)
async def get_contact_pii(
    contact_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    contact = await service.get_contact(db, principal, contact_id)
    return await service.get_contact_pii(db, contact)


@router.get("/contacts/{contact_id}/invitations", response_model=list[InvitationRead])
async def pending_for_contact(
    contact_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.find_pending_for_contact(db, principal, contact_id)


# ── Invitations ───────────────────────────────────────────────────────────────

@router.get("/invitations", response_model=list[InvitationRead])
async def list_sent(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_sent(db, principal)


@router.post("/invitations", response_model=InvitationRead, status_code=201)
async def create_invitation(
    data: InvitationCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.create_invitation(db, principal, data)


@router.get("/invitations/{code}", response_model=InvitationPreview)
async def preview_invitation(code: str, db: AsyncSession = Depends(get_db)):
    invitation = await service.find_valid_by_code(db, code)
    if invitation is None:
        raise NotFound("Invitation not found")
    return invitation


@router.post("/invitations/{code}/accept", response_model=AcceptResult)
async def accept_invitation(
    code: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    invitation, membership, created = await service.accept_invitation(db, principal, code)
    return AcceptResult(
        invitation=InvitationRead.model_validate(invitation),
        membership_id=membership.id if membership else None,
        membership_created=created,
    )


@router.delete("/invitations/{invitation_id}", status_code=204)
async def revoke_invitation(
    invitation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.revoke_invitation(db, principal, invitation_id)
