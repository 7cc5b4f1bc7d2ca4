import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from timegate.core.approvals.policy import (
    ApprovalMode, ApprovalPolicy, StageState, check_completion, next_stage, stage_states, validate_stages,
)
from timegate.core.rbac.permissions import ProjectRole

PROJECT = uuid.uuid4()


def policy(mode, **kw):
    return ApprovalPolicy(project_id=PROJECT, mode=ApprovalMode(mode), **kw)


def test_required_blocks_on_questioned_entry():
    check = check_completion(policy("required"), ["approved", "approved", "questioned"])
    assert not check.satisfied
    assert check.blockers == ["1 questioned entry"]


def test_required_blocks_on_pending_entries():
    check = check_completion(policy("required"), ["pending", "pending", "approved"])
    assert check.blockers == ["2 unapproved entries"]


def test_required_all_approved():
    assert check_completion(policy("required"), ["approved", "approved"]).satisfied


def test_optional_never_blocks():
    assert check_completion(policy("optional"), ["questioned", "pending"]).satisfied


def test_self_approve_only_questioned_blocks_for_creator():
    p = policy("self_approve", allow_self_approve_no_client=True)
    assert check_completion(p, ["pending", "approved"], self_approval=True).satisfied
    assert not check_completion(p, ["questioned"], self_approval=True).satisfied
    # anyone else approving gets the required rules
    assert not check_completion(p, ["pending"]).satisfied


def test_self_approval_allowed():
    assert policy("self_approve", allow_self_approve_no_client=True).self_approval_allowed(False)
    assert not policy("self_approve", allow_self_approve_no_client=True).self_approval_allowed(True)
    assert not policy("self_approve").self_approval_allowed(False)
    assert not policy("required", allow_self_approve_no_client=True).self_approval_allowed(False)


def test_multi_stage_needs_every_stage():
    stages = (ProjectRole.EXPERT, ProjectRole.REVIEWER)
    p = policy("multi_stage", stages=stages)
    now = datetime.now(timezone.utc)
    states = [StageState(ProjectRole.EXPERT, uuid.uuid4(), now), StageState(ProjectRole.REVIEWER)]
    check = check_completion(p, ["approved"], states)
    assert check.blockers == ["stage 'reviewer' not approved"]


def test_multi_stage_without_entry_requirement_ignores_pending():
    p = policy("multi_stage", stages=(ProjectRole.REVIEWER,), require_all_entries_approved=False)
    now = datetime.now(timezone.utc)
    states = [StageState(ProjectRole.REVIEWER, uuid.uuid4(), now)]
    assert check_completion(p, ["pending"], states).satisfied
    assert not check_completion(p, ["questioned"], states).satisfied


def test_stage_states_and_next_stage():
    p = policy("multi_stage", stages=(ProjectRole.EXPERT, ProjectRole.REVIEWER, ProjectRole.CLIENT))
    now = datetime.now(timezone.utc)
    signer = uuid.uuid4()
    rows = [SimpleNamespace(stage="expert", approved_by=signer, approved_at=now)]
    states = stage_states(p, rows)
    assert [s.stage for s in states] == [ProjectRole.EXPERT, ProjectRole.REVIEWER, ProjectRole.CLIENT]
    assert states[0].satisfied and states[0].satisfied_by == signer
    assert not states[1].satisfied
    assert next_stage(states) == ProjectRole.REVIEWER
    assert next_stage([StageState(ProjectRole.EXPERT, signer, now)]) is None


def test_validate_stages():
    assert validate_stages(ApprovalMode.REQUIRED, ["expert"]) == ()
    assert validate_stages(ApprovalMode.MULTI_STAGE, ["expert", "client"]) == (ProjectRole.EXPERT, ProjectRole.CLIENT)
    with pytest.raises(ValueError):
        validate_stages(ApprovalMode.MULTI_STAGE, [])
    with pytest.raises(ValueError):
        validate_stages(ApprovalMode.MULTI_STAGE, ["expert", "expert"])
    with pytest.raises(ValueError):
        validate_stages(ApprovalMode.MULTI_STAGE, ["accountant"])


def test_from_settings_drops_stages_outside_multi_stage():
    settings = SimpleNamespace(
        project_id=PROJECT, approval_mode="required", approval_stages=["expert"],
        auto_approve_after_days=3, require_all_entries_approved=True, allow_self_approve_no_client=False,
    )
    p = ApprovalPolicy.from_settings(settings)
    assert p.stages == ()
    assert p.auto_approve_enabled


def test_auto_approve_cutoff():
    now = datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert policy("required", auto_approve_after_days=7).auto_approve_cutoff(now) == now - timedelta(days=7)
    assert not policy("required").auto_approve_enabled
