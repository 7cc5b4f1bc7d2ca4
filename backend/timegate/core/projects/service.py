import logging
import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from timegate.core.projects.models import Project
from timegate.core.projects.schemas import ProjectCreate, ProjectUpdate
from timegate.core.rbac.models import ProjectMembership
from timegate.core.rbac.permissions import ProjectPermission, ProjectRole, is_system_role
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import ensure_membership, require_active, require_project_permission
from timegate.errors import NotFound

logger = logging.getLogger(__name__)


async def create_project(
    db: AsyncSession,
    principal: Principal,
    data: ProjectCreate,
) -> Project:
    """The creator becomes owner; default approval settings are created alongside."""
    require_active(principal)
    if data.organisation_id is not None:
        from timegate.core.organisations.service import get_organisation
        if not await get_organisation(db, data.organisation_id):
            raise NotFound("Organisation not found")

    project = Project(
        organisation_id=data.organisation_id,
        name=data.name,
        description=data.description,
        created_by=principal.id,
    )
    db.add(project)
    await db.flush()

    await ensure_membership(db, project.id, principal.id, ProjectRole.OWNER)

    from timegate.core.approvals.service import get_or_create_settings
    await get_or_create_settings(db, project.id)

    from timegate.core.audit.service import audit
    await audit(
        db, user_id=principal.id, project_id=project.id,
        action="project.create",
        resource_type="project",
        resource_id=str(project.id),
        detail={"name": data.name},
    )
    logger.info("project %s created by %s", project.id, principal.id)
    await db.refresh(project)
    return project


async def get_project(db: AsyncSession, project_id: uuid.UUID) -> Project | None:
    result = await db.execute(
        select(Project).where(Project.id == project_id, Project.is_deleted == False)
    )
    return result.scalar_one_or_none()


async def require_project(db: AsyncSession, project_id: uuid.UUID) -> Project:
    project = await get_project(db, project_id)
    if not project:
        raise NotFound("Project not found")
    return project


async def list_projects(db: AsyncSession, principal: Principal) -> list[Project]:
    """System admins see every project; everyone else sees the ones they belong to."""
    require_active(principal)
    q = select(Project).where(Project.is_deleted == False)
    if not is_system_role(principal.system_role):
        q = q.join(ProjectMembership, ProjectMembership.project_id == Project.id).where(
            ProjectMembership.user_id == principal.id
        )
    result = await db.execute(q.order_by(Project.created_at.desc()))
    return list(result.scalars().all())


async def update_project(
    db: AsyncSession, principal: Principal, project_id: uuid.UUID, data: ProjectUpdate,
) -> Project:
    project = await require_project(db, project_id)
    await require_project_permission(db, principal, project.id, ProjectPermission.PROJECT_EDIT)
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(project, field, value)
    await db.flush()
    await db.refresh(project)
    return project


async def delete_project(db: AsyncSession, principal: Principal, project_id: uuid.UUID) -> None:
    project = await require_project(db, project_id)
    await require_project_permission(db, principal, project.id, ProjectPermission.PROJECT_DELETE)
    project.is_deleted = True
    # soft delete does not fire the FK cascade
    result = await db.execute(select(ProjectMembership).where(ProjectMembership.project_id == project.id))
    for membership in result.scalars().all():
        await db.delete(membership)
    await db.flush()

    from timegate.core.audit.service import audit
    await audit(db, user_id=principal.id, project_id=project.id,
        action="project.delete", resource_type="project", resource_id=str(project.id),
    )
    logger.info("project %s deleted by %s", project.id, principal.id)
