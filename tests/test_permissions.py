import uuid
from types import SimpleNamespace

import pytest

from timegate.core.rbac.permissions import (
    PROJECT_ROLE_PERMISSIONS, ProjectPermission, ProjectRole, SystemPermission, SystemRole,
    can_access_project_routes, can_access_system_route, can_on_project,
    get_project_permissions_for_role, has_any_project_permission, has_project_permission,
    has_system_permission, is_system_role,
)
from timegate.core.rbac.principal import Principal
from timegate.errors import UnknownPermission


def member(role):
    return SimpleNamespace(role=role)


# ── System tier ───────────────────────────────────────────────────────────────

def test_super_admin_has_every_system_permission():
    principal = Principal(id=uuid.uuid4(), system_role=SystemRole.SUPER_ADMIN)
    assert all(has_system_permission(principal, p) for p in SystemPermission)


def test_admin_cannot_delete_users():
    principal = Principal(id=uuid.uuid4(), system_role=SystemRole.ADMIN)
    assert has_system_permission(principal, "users:view")
    assert has_system_permission(principal, SystemPermission.ORGANISATIONS_DELETE)
    assert not has_system_permission(principal, SystemPermission.USERS_DELETE)
    assert not has_system_permission(principal, SystemPermission.PLATFORM_MANAGE)


def test_no_system_role_has_no_system_permission():
    principal = Principal(id=uuid.uuid4())
    assert not any(has_system_permission(principal, p) for p in SystemPermission)


def test_is_system_role():
    assert is_system_role("super_admin")
    assert is_system_role(SystemRole.ADMIN)
    assert not is_system_role(None)
    assert not is_system_role("owner")


# ── Project tier ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("system_role", [SystemRole.SUPER_ADMIN, SystemRole.ADMIN])
def test_system_admins_pass_every_project_check_without_membership(system_role):
    principal = Principal(id=uuid.uuid4(), system_role=system_role)
    for permission in ProjectPermission:
        assert can_on_project(principal, None, permission)
        assert can_on_project(principal, member("viewer"), permission)


def test_no_membership_denies_everything():
    principal = Principal(id=uuid.uuid4())
    assert not any(can_on_project(principal, None, p) for p in ProjectPermission)


def test_owner_has_every_project_permission():
    assert PROJECT_ROLE_PERMISSIONS[ProjectRole.OWNER] == frozenset(ProjectPermission)


def test_expert_permissions():
    expert = member("expert")
    assert has_project_permission(expert, "time-entries:create")
    assert has_project_permission(expert, "time-entries:edit-own")
    assert not has_project_permission(expert, "time-entries:edit-all")
    assert has_project_permission(expert, "time-sheets:submit")
    assert not has_project_permission(expert, "time-sheets:approve")
    assert not has_project_permission(expert, "entries:approve")


def test_reviewer_permissions():
    reviewer = member(ProjectRole.REVIEWER)
    assert has_project_permission(reviewer, ProjectPermission.TIME_SHEETS_APPROVE)
    assert has_project_permission(reviewer, ProjectPermission.ENTRIES_CHANGE_STATUS)
    assert has_project_permission(reviewer, ProjectPermission.MESSAGES_DELETE_ALL)
    assert not has_project_permission(reviewer, ProjectPermission.TIME_ENTRIES_CREATE)


def test_client_can_approve_entries_but_not_sheets():
    client = member("client")
    assert has_project_permission(client, "entries:approve")
    assert has_project_permission(client, "entries:question")
    assert not has_project_permission(client, "time-sheets:approve")
    assert has_project_permission(client, "contacts:invite")


def test_viewer_is_read_only():
    viewer = member("viewer")
    granted = get_project_permissions_for_role("viewer")
    assert all(p.value.endswith(":view") for p in granted)
    assert not has_project_permission(viewer, "messages:create")


def test_has_any_project_permission():
    viewer = member("viewer")
    assert has_any_project_permission(viewer, ["time-sheets:approve", "project:view"])
    assert not has_any_project_permission(viewer, ["time-sheets:approve", "entries:approve"])


def test_own_grant_is_not_ownership():
    # holding edit-own says nothing about whose entry it is
    principal = Principal(id=uuid.uuid4())
    assert can_on_project(principal, member("expert"), "time-entries:edit-own")
    assert not can_on_project(principal, member("expert"), "time-entries:edit-all")


def test_unknown_permission_fails_fast():
    principal = Principal(id=uuid.uuid4(), system_role=SystemRole.SUPER_ADMIN)
    with pytest.raises(UnknownPermission):
        can_on_project(principal, None, "time-entries:teleport")
    with pytest.raises(UnknownPermission):
        has_system_permission(principal, "users:impersonate")
    with pytest.raises(KeyError):
        has_project_permission(member("owner"), "nope")


# ── Routes ────────────────────────────────────────────────────────────────────

def test_system_routes():
    admin = Principal(id=uuid.uuid4(), system_role=SystemRole.ADMIN)
    nobody = Principal(id=uuid.uuid4())
    assert can_access_system_route(admin, "/users")
    assert not can_access_system_route(nobody, "/organisations")
    assert can_access_system_route(nobody, "/projects")


def test_project_routes_need_a_membership():
    assert not can_access_project_routes([])
    assert can_access_project_routes([member("viewer")])
