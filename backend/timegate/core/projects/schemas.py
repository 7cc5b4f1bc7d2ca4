import uuid
from datetime import datetime
from pydantic import BaseModel, Field

class ProjectCreate(BaseModel):
    name: str = Field(..., max_length=255)
    description: str | None = None
    organisation_id: uuid.UUID | None = None

class ProjectUpdate(BaseModel):
    name: str | None = Field(None, max_length=255)
    description: str | None = None
    status: str | None = None

class ProjectRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    organisation_id: uuid.UUID | None
    name: str
    description: str | None
    status: str
    created_by: uuid.UUID | None
    created_at: datetime
