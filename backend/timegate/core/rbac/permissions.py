"""
Role Registry.

Two tiers of roles, each mapped to an explicit set of named permissions:

  system roles  (users.system_role)      platform administration
  project roles (project_memberships)    project-scoped work

Ownership-scoped grants ("*-own") are ordinary named permissions. Holding one
says nothing about whether the principal owns a given resource; callers must
check ``resource.created_by == principal.id`` themselves before relying on it.

Adding a role or a permission is a change to the tables below, never to call
sites.
"""

from enum import Enum
from typing import Iterable, Protocol

from timegate.errors import UnknownPermission


class SystemRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"


class ProjectRole(str, Enum):
    OWNER = "owner"
    EXPERT = "expert"
    REVIEWER = "reviewer"
    CLIENT = "client"
    VIEWER = "viewer"


class SystemPermission(str, Enum):
    USERS_VIEW = "users:view"
    USERS_CREATE = "users:create"
    USERS_EDIT = "users:edit"
    USERS_DELETE = "users:delete"
    ORGANISATIONS_VIEW = "organisations:view"
    ORGANISATIONS_CREATE = "organisations:create"
    ORGANISATIONS_EDIT = "organisations:edit"
    ORGANISATIONS_DELETE = "organisations:delete"
    PLATFORM_MANAGE = "platform:manage"


class ProjectPermission(str, Enum):
    TIME_ENTRIES_VIEW = "time-entries:view"
    TIME_ENTRIES_CREATE = "time-entries:create"
    TIME_ENTRIES_EDIT_OWN = "time-entries:edit-own"
    TIME_ENTRIES_EDIT_ALL = "time-entries:edit-all"
    TIME_ENTRIES_DELETE_OWN = "time-entries:delete-own"
    TIME_ENTRIES_DELETE_ALL = "time-entries:delete-all"

    TIME_SHEETS_VIEW = "time-sheets:view"
    TIME_SHEETS_CREATE = "time-sheets:create"
    TIME_SHEETS_EDIT = "time-sheets:edit"
    TIME_SHEETS_SUBMIT = "time-sheets:submit"
    TIME_SHEETS_APPROVE = "time-sheets:approve"

    ENTRIES_QUESTION = "entries:question"
    ENTRIES_APPROVE = "entries:approve"
    ENTRIES_CHANGE_STATUS = "entries:change-status"

    MESSAGES_VIEW = "messages:view"
    MESSAGES_CREATE = "messages:create"
    MESSAGES_DELETE_OWN = "messages:delete-own"
    MESSAGES_DELETE_ALL = "messages:delete-all"

    APPROVAL_SETTINGS_VIEW = "approval-settings:view"
    APPROVAL_SETTINGS_EDIT = "approval-settings:edit"

    PROJECT_VIEW = "project:view"
    PROJECT_EDIT = "project:edit"
    PROJECT_DELETE = "project:delete"
    PROJECT_INVITE = "project:invite"
    PROJECT_MANAGE_MEMBERS = "project:manage-members"

    CONTACTS_VIEW = "contacts:view"
    CONTACTS_INVITE = "contacts:invite"


SYSTEM_PERMISSION_DESCRIPTIONS: dict[SystemPermission, str] = {
    SystemPermission.USERS_VIEW: "View all platform users",
    SystemPermission.USERS_CREATE: "Create new users",
    SystemPermission.USERS_EDIT: "Edit user accounts",
    SystemPermission.USERS_DELETE: "Delete user accounts",
    SystemPermission.ORGANISATIONS_VIEW: "View all organisations",
    SystemPermission.ORGANISATIONS_CREATE: "Create organisations",
    SystemPermission.ORGANISATIONS_EDIT: "Edit organisations",
    SystemPermission.ORGANISATIONS_DELETE: "Delete organisations",
    SystemPermission.PLATFORM_MANAGE: "Manage platform settings",
}

P = ProjectPermission

SYSTEM_ROLE_PERMISSIONS: dict[SystemRole, frozenset[SystemPermission]] = {
    SystemRole.SUPER_ADMIN: frozenset(SystemPermission),
    # admins cannot delete users or manage the platform
    SystemRole.ADMIN: frozenset({
        SystemPermission.USERS_VIEW,
        SystemPermission.USERS_CREATE,
        SystemPermission.USERS_EDIT,
        SystemPermission.ORGANISATIONS_VIEW,
        SystemPermission.ORGANISATIONS_CREATE,
        SystemPermission.ORGANISATIONS_EDIT,
        SystemPermission.ORGANISATIONS_DELETE,
    }),
}

PROJECT_ROLE_PERMISSIONS: dict[ProjectRole, frozenset[ProjectPermission]] = {
    ProjectRole.OWNER: frozenset({
        P.PROJECT_VIEW, P.PROJECT_EDIT, P.PROJECT_DELETE, P.PROJECT_INVITE, P.PROJECT_MANAGE_MEMBERS,
        P.TIME_ENTRIES_VIEW, P.TIME_ENTRIES_CREATE,
        P.TIME_ENTRIES_EDIT_OWN, P.TIME_ENTRIES_EDIT_ALL,
        P.TIME_ENTRIES_DELETE_OWN, P.TIME_ENTRIES_DELETE_ALL,
        P.TIME_SHEETS_VIEW, P.TIME_SHEETS_CREATE, P.TIME_SHEETS_EDIT,
        P.TIME_SHEETS_SUBMIT, P.TIME_SHEETS_APPROVE,
        P.ENTRIES_QUESTION, P.ENTRIES_APPROVE, P.ENTRIES_CHANGE_STATUS,
        P.MESSAGES_VIEW, P.MESSAGES_CREATE, P.MESSAGES_DELETE_OWN, P.MESSAGES_DELETE_ALL,
        P.APPROVAL_SETTINGS_VIEW, P.APPROVAL_SETTINGS_EDIT,
        P.CONTACTS_VIEW, P.CONTACTS_INVITE,
    }),
    ProjectRole.EXPERT: frozenset({
        P.PROJECT_VIEW,
        P.TIME_ENTRIES_VIEW, P.TIME_ENTRIES_CREATE, P.TIME_ENTRIES_EDIT_OWN, P.TIME_ENTRIES_DELETE_OWN,
        P.TIME_SHEETS_VIEW, P.TIME_SHEETS_CREATE, P.TIME_SHEETS_EDIT, P.TIME_SHEETS_SUBMIT,
        P.MESSAGES_VIEW, P.MESSAGES_CREATE, P.MESSAGES_DELETE_OWN,
        P.APPROVAL_SETTINGS_VIEW,
        P.CONTACTS_VIEW,
    }),
    ProjectRole.REVIEWER: frozenset({
        P.PROJECT_VIEW,
        P.TIME_ENTRIES_VIEW,
        P.TIME_SHEETS_VIEW, P.TIME_SHEETS_APPROVE,
        P.ENTRIES_QUESTION, P.ENTRIES_APPROVE, P.ENTRIES_CHANGE_STATUS,
        P.MESSAGES_VIEW, P.MESSAGES_CREATE, P.MESSAGES_DELETE_OWN, P.MESSAGES_DELETE_ALL,
        P.APPROVAL_SETTINGS_VIEW,
        P.CONTACTS_VIEW,
    }),
    ProjectRole.CLIENT: frozenset({
        P.PROJECT_VIEW,
        P.TIME_ENTRIES_VIEW,
        P.TIME_SHEETS_VIEW,
        P.ENTRIES_QUESTION, P.ENTRIES_APPROVE,
        P.MESSAGES_VIEW, P.MESSAGES_CREATE, P.MESSAGES_DELETE_OWN,
        P.CONTACTS_VIEW, P.CONTACTS_INVITE,
    }),
    ProjectRole.VIEWER: frozenset({
        P.PROJECT_VIEW,
        P.TIME_ENTRIES_VIEW,
        P.TIME_SHEETS_VIEW,
        P.MESSAGES_VIEW,
    }),
}

# Routes gated by system permissions; anything else is not a system route.
SYSTEM_ROUTE_PERMISSIONS: dict[str, tuple[SystemPermission, ...]] = {
    "/users": (SystemPermission.USERS_VIEW,),
    "/organisations": (SystemPermission.ORGANISATIONS_VIEW,),
}

PROJECT_ROUTES = ("/projects", "/time-entries", "/time-sheets", "/contacts")


class HasSystemRole(Protocol):
    system_role: SystemRole | str | None


class HasProjectRole(Protocol):
    role: ProjectRole | str


def system_permission(value: SystemPermission | str) -> SystemPermission:
    try:
        return SystemPermission(value)
    except ValueError:
        raise UnknownPermission(value) from None


def project_permission(value: ProjectPermission | str) -> ProjectPermission:
    try:
        return ProjectPermission(value)
    except ValueError:
        raise UnknownPermission(value) from None


def _system_role(value: SystemRole | str | None) -> SystemRole | None:
    if value is None:
        return None
    return SystemRole(value)


def is_system_role(role: str | None) -> bool:
    return role in (SystemRole.SUPER_ADMIN.value, SystemRole.ADMIN.value)


def has_system_permission(principal: HasSystemRole, permission: SystemPermission | str) -> bool:
    permission = system_permission(permission)
    role = _system_role(principal.system_role)
    if role is None:
        return False
    return permission in SYSTEM_ROLE_PERMISSIONS[role]


def has_project_permission(membership: HasProjectRole, permission: ProjectPermission | str) -> bool:
    permission = project_permission(permission)
    return permission in PROJECT_ROLE_PERMISSIONS[ProjectRole(membership.role)]


def has_any_project_permission(
    membership: HasProjectRole, permissions: Iterable[ProjectPermission | str],
) -> bool:
    return any(has_project_permission(membership, p) for p in permissions)


def can_on_project(
    principal: HasSystemRole,
    membership: HasProjectRole | None,
    permission: ProjectPermission | str,
) -> bool:
    """System admins pass unconditionally; everyone else needs a membership granting it."""
    permission = project_permission(permission)
    if is_system_role(principal.system_role):
        return True
    if membership is None:
        return False
    return has_project_permission(membership, permission)


def get_project_permissions_for_role(role: ProjectRole | str) -> frozenset[ProjectPermission]:
    return PROJECT_ROLE_PERMISSIONS[ProjectRole(role)]


def can_access_system_route(principal: HasSystemRole, route: str) -> bool:
    required = SYSTEM_ROUTE_PERMISSIONS.get(route)
    if not required:
        return True
    if principal.system_role is None:
        return False
    return any(has_system_permission(principal, p) for p in required)


def can_access_project_routes(memberships: Iterable[HasProjectRole]) -> bool:
    return any(True for _ in memberships)
