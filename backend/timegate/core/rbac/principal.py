import uuid
from dataclasses import dataclass

from timegate.core.rbac.permissions import SystemRole


@dataclass(frozen=True)
class Principal:
    """Authenticated identity, passed explicitly into every engine call."""
    id: uuid.UUID
    system_role: SystemRole | None = None
    is_active: bool = True

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(
            id=user.id,
            system_role=SystemRole(user.system_role) if user.system_role else None,
            is_active=user.status == "active" and not user.is_deleted,
        )
