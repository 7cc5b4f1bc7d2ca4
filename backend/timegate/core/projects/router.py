import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timegate.core.projects import service
from timegate.core.projects.schemas import ProjectCreate, ProjectRead, ProjectUpdate
from timegate.core.rbac.permissions import ProjectPermission
from timegate.core.rbac.principal import Principal
from timegate.core.rbac.service import require_project_permission
from timegate.dependencies import get_current_principal, get_db

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("", response_model=list[ProjectRead])
async def list_projects(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.list_projects(db, principal)


@router.post("", response_model=ProjectRead, status_code=201)
async def create_project(
    data: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.create_project(db, principal, data)


@router.get("/{project_id}", response_model=ProjectRead)
async def get_project(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    project = await service.require_project(db, project_id)
    await require_project_permission(db, principal, project.id, ProjectPermission.PROJECT_VIEW)
    return project


@router.patch("/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: uuid.UUID,
    data: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await service.update_project(db, principal, project_id, data)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await service.delete_project(db, principal, project_id)
