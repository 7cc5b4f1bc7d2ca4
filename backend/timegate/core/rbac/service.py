"""
Permission Resolver and membership management.

Every guard here takes the Principal explicitly. A denial raises Unauthorized
before anything is written, so the surrounding transaction has nothing to
roll back.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.rbac.models import User, ProjectMembership
from timegate.core.rbac.permissions import (
    ProjectPermission, ProjectRole, SystemPermission,
    PROJECT_ROUTES, SYSTEM_PERMISSION_DESCRIPTIONS, SYSTEM_ROLE_PERMISSIONS, SYSTEM_ROUTE_PERMISSIONS,
    can_access_project_routes, can_access_system_route, can_on_project,
    get_project_permissions_for_role, has_system_permission, is_system_role,
)
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.schemas import UserCreate, UserUpdate
from timegate.errors import ConflictingUniqueness, InvalidRequest, NotFound, Unauthorized

logger = logging.getLogger(__name__)


# ── Users ─────────────────────────────────────────────────────────────────────

async def create_user(db: AsyncSession, data: UserCreate) -> User:
    user = User(
        email=data.email.lower(),
        full_name=data.full_name,
        system_role=data.system_role.value if data.system_role else None,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id, User.is_deleted == False))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower(), User.is_deleted == False))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession, principal: Principal) -> list[User]:
    require_system_permission(principal, SystemPermission.USERS_VIEW)
    result = await db.execute(select(User).where(User.is_deleted == False).order_by(User.email))
    return list(result.scalars().all())


async def update_user(db: AsyncSession, principal: Principal, user: User, data: UserUpdate) -> User:
    require_system_permission(principal, SystemPermission.USERS_EDIT)
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(user, field, value)
    await db.flush()
    await db.refresh(user)
    return user


async def delete_user(db: AsyncSession, principal: Principal, user: User) -> None:
    require_system_permission(principal, SystemPermission.USERS_DELETE)
    user.is_deleted = True
    # memberships go with the user
    result = await db.execute(select(ProjectMembership).where(ProjectMembership.user_id == user.id))
    for membership in result.scalars().all():
        await db.delete(membership)
    await db.flush()


async def load_principal(db: AsyncSession, user_id: uuid.UUID) -> Principal | None:
    user = await get_user(db, user_id)
    if not user:
        return None
    return Principal.from_user(user)


# ── Guards ────────────────────────────────────────────────────────────────────

def require_active(principal: Principal) -> None:
    if not principal.is_active:
        logger.warning("inactive principal %s denied", principal.id)
        raise Unauthorized("Principal is not active")


def require_system_permission(principal: Principal, permission: SystemPermission | str) -> None:
    require_active(principal)
    if not has_system_permission(principal, permission):
        logger.warning("principal %s denied system permission %s", principal.id, permission,
                       extra={"principal_id": principal.id, "event_type": "access.denied"})
        raise Unauthorized(f"Missing permission '{SystemPermission(permission).value}'")


async def get_membership(
    db: AsyncSession,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
) -> ProjectMembership | None:
    result = await db.execute(
        select(ProjectMembership).where(
            ProjectMembership.project_id == project_id,
            ProjectMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def check_project_permission(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID | None,
    permission: ProjectPermission | str,
) -> bool:
    """Non-raising form. Resources without a project are reachable by system admins only."""
    if not principal.is_active:
        return False
    membership = await get_membership(db, project_id, principal.id) if project_id else None
    return can_on_project(principal, membership, permission)


async def require_project_permission(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID | None,
    permission: ProjectPermission | str,
) -> ProjectMembership | None:
    require_active(principal)
    membership = await get_membership(db, project_id, principal.id) if project_id else None
    if not can_on_project(principal, membership, permission):
        logger.warning(
            "principal %s denied %s on project %s", principal.id, permission, project_id,
            extra={"principal_id": principal.id, "project_id": project_id, "event_type": "access.denied"},
        )
        raise Unauthorized(f"Missing permission '{ProjectPermission(permission).value}'")
    return membership


async def require_owned_or_any(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID | None,
    *,
    owner_id: uuid.UUID | None,
    own: ProjectPermission,
    any_: ProjectPermission,
) -> None:
    """Allow with the unrestricted grant, or with the "-own" grant AND ownership."""
    require_active(principal)
    membership = await get_membership(db, project_id, principal.id) if project_id else None
    if can_on_project(principal, membership, any_):
        return
    if can_on_project(principal, membership, own) and owner_id == principal.id:
        return
    logger.warning("principal %s denied %s/%s on project %s", principal.id, own.value, any_.value, project_id)
    raise Unauthorized(f"Missing permission '{any_.value}' (or '{own.value}' as owner)")


async def effective_permissions(
    db: AsyncSession, principal: Principal, project_id: uuid.UUID,
) -> tuple[str | None, list[str]]:
    if is_system_role(principal.system_role):
        return principal.system_role.value, sorted(p.value for p in ProjectPermission)
    membership = await get_membership(db, project_id, principal.id)
    if not membership or not principal.is_active:
        return None, []
    return membership.role, sorted(p.value for p in get_project_permissions_for_role(membership.role))


async def access_summary(db: AsyncSession, principal: Principal) -> tuple[dict[str, str], dict[str, bool]]:
    """System permissions with their descriptions, and which top-level routes the principal may open."""
    if not principal.is_active:
        return {}, {route: False for route in (*SYSTEM_ROUTE_PERMISSIONS, *PROJECT_ROUTES)}
    granted = SYSTEM_ROLE_PERMISSIONS[principal.system_role] if principal.system_role else frozenset()
    permissions = {p.value: SYSTEM_PERMISSION_DESCRIPTIONS[p] for p in SystemPermission if p in granted}

    routes = {route: can_access_system_route(principal, route) for route in SYSTEM_ROUTE_PERMISSIONS}
    project_access = is_system_role(principal.system_role) or can_access_project_routes(
        await list_user_memberships(db, principal.id)
    )
    routes.update({route: project_access for route in PROJECT_ROUTES})
    return permissions, routes


# ── Memberships ───────────────────────────────────────────────────────────────

async def ensure_membership(
    db: AsyncSession,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ProjectRole | str,
) -> tuple[ProjectMembership, bool]:
    """
    Create the membership unless one exists. Returns (membership, created).
    A concurrent writer hitting the unique constraint is treated as success.
    """
    existing = await get_membership(db, project_id, user_id)
    if existing:
        return existing, False
    membership = ProjectMembership(project_id=project_id, user_id=user_id, role=ProjectRole(role).value)
    try:
        async with db.begin_nested():
            db.add(membership)
            await db.flush()
    except IntegrityError:
        logger.info("membership (%s, %s) created concurrently, re-reading", project_id, user_id)
        existing = await get_membership(db, project_id, user_id)
        if existing is None:
            raise
        return existing, False
    return membership, True


async def add_member(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ProjectRole,
) -> ProjectMembership:
    await require_project_permission(db, principal, project_id, ProjectPermission.PROJECT_MANAGE_MEMBERS)
    if not await get_user(db, user_id):
        raise NotFound("User not found")
    if await get_membership(db, project_id, user_id):
        raise ConflictingUniqueness("User is already a member of this project")
    membership, _ = await ensure_membership(db, project_id, user_id, role)

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=project_id,
        action="membership.add", resource_type="project_membership",
        resource_id=str(membership.id), detail={"user_id": str(user_id), "role": membership.role},
    )
    await db.refresh(membership)
    return membership


async def change_member_role(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ProjectRole,
) -> ProjectMembership:
    await require_project_permission(db, principal, project_id, ProjectPermission.PROJECT_MANAGE_MEMBERS)
    membership = await get_membership(db, project_id, user_id)
    if not membership:
        raise NotFound("Membership not found")
    if membership.role == ProjectRole.OWNER.value and role != ProjectRole.OWNER:
        await _require_other_owner(db, project_id, user_id)
    previous = membership.role
    membership.role = ProjectRole(role).value
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=project_id,
        action="membership.change_role", resource_type="project_membership",
        resource_id=str(membership.id), detail={"from": previous, "to": membership.role},
    )
    await db.refresh(membership)
    return membership


async def remove_member(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    await require_project_permission(db, principal, project_id, ProjectPermission.PROJECT_MANAGE_MEMBERS)
    membership = await get_membership(db, project_id, user_id)
    if not membership:
        raise NotFound("Membership not found")
    if membership.role == ProjectRole.OWNER.value:
        await _require_other_owner(db, project_id, user_id)
    await db.delete(membership)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=project_id,
        action="membership.remove", resource_type="project_membership",
        resource_id=str(membership.id), detail={"user_id": str(user_id)},
    )


async def _require_other_owner(db: AsyncSession, project_id: uuid.UUID, user_id: uuid.UUID) -> None:
    result = await db.execute(
        select(ProjectMembership).where(
            ProjectMembership.project_id == project_id,
            ProjectMembership.role == ProjectRole.OWNER.value,
            ProjectMembership.user_id != user_id,
        )
    )
    if result.scalars().first() is None:
        raise InvalidRequest("A project must keep at least one owner")


async def list_members(db: AsyncSession, principal: Principal, project_id: uuid.UUID) -> list[ProjectMembership]:
    await require_project_permission(db, principal, project_id, ProjectPermission.PROJECT_VIEW)
    result = await db.execute(
        select(ProjectMembership)
        .where(ProjectMembership.project_id == project_id)
        .order_by(ProjectMembership.created_at.asc())
    )
    return list(result.scalars().all())


async def list_user_memberships(db: AsyncSession, user_id: uuid.UUID) -> list[ProjectMembership]:
    result = await db.execute(select(ProjectMembership).where(ProjectMembership.user_id == user_id))
    return list(result.scalars().all())
