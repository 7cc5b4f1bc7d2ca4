import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.organisations.models import Organisation
from timegate.core.organisations.schemas import OrganisationCreate, OrganisationUpdate
from timegate.core.rbac.permissions import SystemPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import require_system_permission
from timegate.errors import ConflictingUniqueness


async def create_organisation(db: AsyncSession, principal: Principal, data: OrganisationCreate) -> Organisation:
    require_system_permission(principal, SystemPermission.ORGANISATIONS_CREATE)
    if await get_organisation_by_slug(db, data.slug):
        raise ConflictingUniqueness("Organisation slug already in use")
    organisation = Organisation(**data.model_dump())
    db.add(organisation)
    await db.flush()
    await db.refresh(organisation)
    return organisation


async def get_organisation(db: AsyncSession, organisation_id: uuid.UUID) -> Organisation | None:
    result = await db.execute(
        select(Organisation).where(Organisation.id == organisation_id, Organisation.is_deleted == False)
    )
    return result.scalar_one_or_none()


async def get_organisation_by_slug(db: AsyncSession, slug: str) -> Organisation | None:
    result = await db.execute(select(Organisation).where(Organisation.slug == slug, Organisation.is_deleted == False))
    return result.scalar_one_or_none()


async def list_organisations(db: AsyncSession, principal: Principal) -> list[Organisation]:
    require_system_permission(principal, SystemPermission.ORGANISATIONS_VIEW)
    result = await db.execute(select(Organisation).where(Organisation.is_deleted == False).order_by(Organisation.name))
    return list(result.scalars().all())


async def update_organisation(
    db: AsyncSession, principal: Principal, organisation: Organisation, data: OrganisationUpdate,
) -> Organisation:
    require_system_permission(principal, SystemPermission.ORGANISATIONS_EDIT)
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(organisation, field, value)
    await db.flush()
    await db.refresh(organisation)
    return organisation


async def delete_organisation(db: AsyncSession, principal: Principal, organisation: Organisation) -> None:
    require_system_permission(principal, SystemPermission.ORGANISATIONS_DELETE)
    organisation.is_deleted = True
    await db.flush()
