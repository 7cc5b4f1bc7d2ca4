"""
Approval Policy Engine, pure part.

An ApprovalPolicy is resolved once per project per operation and then passed
around; nothing in this module touches the database.

Modes:
  required      every entry approved, no entry questioned
  multi_stage   each stage role signs off in order; entries as required when
                require_all_entries_approved, otherwise only questioned blocks
  self_approve  the sheet's creator may approve it when allowed and the project
                has no client; entries then only block while questioned.
                Otherwise behaves like required.
  optional      nothing blocks
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Sequence

from timegate.core.entries.models import EntryStatus
from timegate.core.rbac.permissions import ProjectRole


class ApprovalMode(str, Enum):
    REQUIRED = "required"
    MULTI_STAGE = "multi_stage"
    SELF_APPROVE = "self_approve"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class ApprovalPolicy:
    project_id: uuid.UUID
    mode: ApprovalMode
    stages: tuple[ProjectRole, ...] = ()
    auto_approve_after_days: int = 0
    require_all_entries_approved: bool = True
    allow_self_approve_no_client: bool = False

    @classmethod
    def from_settings(cls, settings) -> "ApprovalPolicy":
        mode = ApprovalMode(settings.approval_mode)
        stages = tuple(ProjectRole(s) for s in (settings.approval_stages or ())) if mode == ApprovalMode.MULTI_STAGE else ()
        return cls(
            project_id=settings.project_id,
            mode=mode,
            stages=stages,
            auto_approve_after_days=settings.auto_approve_after_days,
            require_all_entries_approved=settings.require_all_entries_approved,
            allow_self_approve_no_client=settings.allow_self_approve_no_client,
        )

    @property
    def auto_approve_enabled(self) -> bool:
        return self.auto_approve_after_days > 0

    def auto_approve_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.auto_approve_after_days)

    def self_approval_allowed(self, project_has_client: bool) -> bool:
        return (
            self.mode == ApprovalMode.SELF_APPROVE
            and self.allow_self_approve_no_client
            and not project_has_client
        )


@dataclass(frozen=True)
class StageState:
    stage: ProjectRole
    satisfied_by: uuid.UUID | None = None
    satisfied_at: datetime | None = None

    @property
    def satisfied(self) -> bool:
        return self.satisfied_at is not None


@dataclass
class CompletionCheck:
    blockers: list[str] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        return not self.blockers


def validate_stages(mode: ApprovalMode, stages: Sequence[str] | None) -> tuple[ProjectRole, ...]:
    """multi_stage needs a non-empty, duplicate-free list of project roles; other modes drop it."""
    if mode != ApprovalMode.MULTI_STAGE:
        return ()
    if not stages:
        raise ValueError("multi_stage approval requires at least one stage")
    roles = tuple(ProjectRole(s) for s in stages)
    if len(set(roles)) != len(roles):
        raise ValueError("approval stages must not repeat a role")
    return roles


def stage_states(policy: ApprovalPolicy, approvals: Iterable) -> list[StageState]:
    """Ordered stage progress from stored approval rows (stage, approved_by, approved_at)."""
    by_stage = {ProjectRole(a.stage): a for a in approvals}
    states = []
    for stage in policy.stages:
        record = by_stage.get(stage)
        if record is None:
            states.append(StageState(stage=stage))
        else:
            states.append(StageState(stage=stage, satisfied_by=record.approved_by, satisfied_at=record.approved_at))
    return states


def next_stage(states: Sequence[StageState]) -> ProjectRole | None:
    for state in states:
        if not state.satisfied:
            return state.stage
    return None


def check_completion(
    policy: ApprovalPolicy,
    entry_statuses: Sequence[str],
    states: Sequence[StageState] = (),
    *,
    self_approval: bool = False,
) -> CompletionCheck:
    check = CompletionCheck()
    if policy.mode == ApprovalMode.OPTIONAL:
        return check

    questioned = sum(1 for s in entry_statuses if s == EntryStatus.QUESTIONED.value)
    pending = sum(1 for s in entry_statuses if s == EntryStatus.PENDING.value)

    if questioned:
        check.blockers.append(f"{questioned} questioned entr{'y' if questioned == 1 else 'ies'}")

    if policy.mode == ApprovalMode.MULTI_STAGE:
        needs_entries = policy.require_all_entries_approved
    elif policy.mode == ApprovalMode.SELF_APPROVE and self_approval:
        needs_entries = False
    else:
        needs_entries = True
    if needs_entries and pending:
        check.blockers.append(f"{pending} unapproved entr{'y' if pending == 1 else 'ies'}")

    if policy.mode == ApprovalMode.MULTI_STAGE:
        for state in states:
            if not state.satisfied:
                check.blockers.append(f"stage '{state.stage.value}' not approved")
    return check
