import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.rbac import service
from timegate.core.rbac.permissions import SystemPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.schemas import (
    AccessRead, MembershipCreate, MembershipRead, MembershipUpdate, PermissionsRead,
    UserCreate, UserRead, UserUpdate,
)
from timegate.dependencies import get_current_principal, get_db
from timegate.errors import ConflictingUniqueness, NotFound

router = APIRouter(tags=["rbac"])


# ── Users ─────────────────────────────────────────────────────────────────────

@router.get("/users/me", response_model=UserRead)
async def me(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.get_user(db, principal.id)


@router.get("/users/me/access", response_model=AccessRead)
async def my_access(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    permissions, routes = await service.access_summary(db, principal)
    return AccessRead(
        system_role=principal.system_role.value if principal.system_role else None,
        system_permissions=permissions,
        routes=routes,
    )


@router.get("/users", response_model=list[UserRead])
async def list_users(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_users(db, principal)


@router.post("/users", response_model=UserRead, status_code=201)
async def create_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service.require_system_permission(principal, SystemPermission.USERS_CREATE)
    if await service.get_user_by_email(db, data.email):
        raise ConflictingUniqueness("Email already registered")
    return await service.create_user(db, data)


@router.patch("/users/{user_id}", response_model=UserRead)
async def update_user(
    user_id: uuid.UUID,
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user = await service.get_user(db, user_id)
    if not user:
        raise NotFound("User not found")
    return await service.update_user(db, principal, user, data)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user = await service.get_user(db, user_id)
    if not user:
        raise NotFound("User not found")
    await service.delete_user(db, principal, user)


# ── Memberships ───────────────────────────────────────────────────────────────

@router.get("/projects/{project_id}/members", response_model=list[MembershipRead])
async def list_members(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_members(db, principal, project_id)


@router.post("/projects/{project_id}/members", response_model=MembershipRead, status_code=201)
async def add_member(
    project_id: uuid.UUID,
    data: MembershipCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.add_member(db, principal, project_id, data.user_id, data.role)


@router.patch("/projects/{project_id}/members/{user_id}", response_model=MembershipRead)
async def change_member_role(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    data: MembershipUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.change_member_role(db, principal, project_id, user_id, data.role)


@router.delete("/projects/{project_id}/members/{user_id}", status_code=204)
async def remove_member(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.remove_member(db, principal, project_id, user_id)


@router.get("/projects/{project_id}/permissions", response_model=PermissionsRead)
async def my_permissions(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    role, permissions = await service.effective_permissions(db, principal, project_id)
    return PermissionsRead(project_id=project_id, role=role, permissions=permissions)
