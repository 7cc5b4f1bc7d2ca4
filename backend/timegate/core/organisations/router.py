import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.organisations import service
from timegate.core.organisations.schemas import OrganisationCreate, OrganisationRead, OrganisationUpdate
from timegate.core.rbac.permissions import SystemPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import require_system_permission
from timegate.dependencies import get_current_principal, get_db
from timegate.errors import NotFound

router = APIRouter(prefix="/organisations", tags=["organisations"])


async def _require(db: AsyncSession, organisation_id: uuid.UUID):
    organisation = await service.get_organisation(db, organisation_id)
    if not organisation:
        raise NotFound("Organisation not found")
    return organisation


@router.get("", response_model=list[OrganisationRead])
async def list_organisations(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_organisations(db, principal)


@router.post("", response_model=OrganisationRead, status_code=201)
async def create_organisation(
    data: OrganisationCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.create_organisation(db, principal, data)


@router.get("/{organisation_id}", response_model=OrganisationRead)
async def get_organisation(
    organisation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    require_system_permission(principal, SystemPermission.ORGANISATIONS_VIEW)
    return await _require(db, organisation_id)


@router.patch("/{organisation_id}", response_model=OrganisationRead)
async def update_organisation(
    organisation_id: uuid.UUID,
    data: OrganisationUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.update_organisation(db, principal, await _require(db, organisation_id), data)


@router.delete("/{organisation_id}", status_code=204)
async def delete_organisation(
    organisation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.delete_organisation(db, principal, await _require(db, organisation_id))
