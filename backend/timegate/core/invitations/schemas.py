import uuid
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, model_validator

from timegate.core.rbac.permissions import ProjectRole


class ContactCreate(BaseModel):
    email: EmailStr
    organisation_id: uuid.UUID | None = None
    name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    address: str | None = None
    notes: str | None = None


class PiiRead(BaseModel):
    model_config = {"from_attributes": True}
    name: str | None
    phone: str | None
    address: str | None
    notes: str | None


class ContactRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    owner_id: uuid.UUID
    email: str
    user_id: uuid.UUID | None
    pii_id: uuid.UUID | None
    organisation_id: uuid.UUID | None
    created_at: datetime


class InvitationCreate(BaseModel):
    contact_id: uuid.UUID
    project_id: uuid.UUID | None = None
    role: ProjectRole | None = None

    @model_validator(mode="after")
    def role_with_project(self) -> "InvitationCreate":
        if self.role is not None and self.project_id is None:
            raise ValueError("role requires project_id")
        return self


class InvitationRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    contact_id: uuid.UUID
    invited_by: uuid.UUID
    project_id: uuid.UUID | None
    role: str | None
    code: str
    expires_at: datetime
    status: str
    accepted_by: uuid.UUID | None
    accepted_at: datetime | None
    created_at: datetime


class InvitationPreview(BaseModel):
    """What the invite page shows before acceptance; no inviter contact details."""
    model_config = {"from_attributes": True}
    code: str
    project_id: uuid.UUID | None
    role: str | None
    expires_at: datetime
    status: str


class AcceptResult(BaseModel):
    invitation: InvitationRead
    membership_id: uuid.UUID | None
    membership_created: bool
