import uuid
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from timegate.core.rbac.permissions import ProjectRole, SystemRole


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str | None = Field(None, max_length=255)
    system_role: SystemRole | None = None


class UserUpdate(BaseModel):
    full_name: str | None = None
    status: str | None = None


class UserRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    email: str
    full_name: str | None
    system_role: str | None
    status: str
    created_at: datetime


class MembershipCreate(BaseModel):
    user_id: uuid.UUID
    role: ProjectRole


class MembershipUpdate(BaseModel):
    role: ProjectRole


class MembershipRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    project_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    created_at: datetime


class PermissionsRead(BaseModel):
    project_id: uuid.UUID
    role: str | None
    permissions: list[str]


class AccessRead(BaseModel):
    system_role: str | None
    system_permissions: dict[str, str]
    routes: dict[str, bool]
