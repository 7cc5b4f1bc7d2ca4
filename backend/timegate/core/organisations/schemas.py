import uuid
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


class OrganisationCreate(BaseModel):
    name: str = Field(..., max_length=255)
    slug: str = Field(..., max_length=100, pattern=r"^[a-z0-9-]+$")
    contact_email: EmailStr | None = None
    notes: str | None = None


class OrganisationUpdate(BaseModel):
    name: str | None = Field(None, max_length=255)
    contact_email: EmailStr | None = None
    status: str | None = None
    notes: str | None = None


class OrganisationRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    name: str
    slug: str
    contact_email: str | None
    status: str
    notes: str | None
    created_at: datetime
