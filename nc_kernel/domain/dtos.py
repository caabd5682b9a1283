"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the service boundary:
    the non-conformity aggregate root, its four stage records, tasks, the
    caller context, filters, and the input payloads accepted by the write
    operations.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ORM models convert to these via ``to_dto()``; services return only
    these, never ORM instances.

Invariants enforced:
    - ``stage_completed_at`` always has exactly six slots (index 0 is
      stage 1).
    - Input payloads are frozen; they are validated by the stage record
      stores, not here.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from nc_kernel.domain.values import (
    ActionPlanStatus,
    AnalysisMethod,
    CallerRole,
    ImmediateActionStatus,
    NCStatus,
    Severity,
    Stage,
    TaskPriority,
    TaskStatus,
    TaskType,
)

# ---------------------------------------------------------------------------
# Caller
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CallerContext:
    """
    Who is calling, and on behalf of which organization.

    Every operation is scoped to ``organization_id``.  Records belonging to
    another organization are never returned or mutated.
    """

    actor_id: UUID
    organization_id: UUID
    roles: frozenset[CallerRole] = frozenset({CallerRole.MEMBER})
    correlation_id: str | None = None

    @property
    def can_write(self) -> bool:
        return CallerRole.MEMBER in self.roles or CallerRole.ADMIN in self.roles

    @property
    def is_admin(self) -> bool:
        return CallerRole.ADMIN in self.roles


# ---------------------------------------------------------------------------
# Non-conformity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NonConformityDraft:
    """Fields supplied when registering a non-conformity."""

    title: str
    category: str
    severity: Severity | str
    detected_date: date
    description: str = ""
    source: str = ""
    damage_level: str | None = None
    impact_analysis: str | None = None
    sector: str | None = None
    responsible_user_id: UUID | None = None
    due_date: date | None = None


@dataclass(frozen=True)
class NonConformity:
    """
    Aggregate root of the corrective action lifecycle.

    ``is_effective`` is None until stage 6 is evaluated.  An open
    non-conformity with ``is_effective is False`` has been superseded by a
    revision and takes no further writes.
    """

    id: UUID
    organization_id: UUID
    nc_number: str
    title: str
    description: str
    category: str
    severity: Severity
    source: str
    detected_date: date
    status: NCStatus
    current_stage: int
    stage_completed_at: tuple[datetime | None, ...]
    revision_number: int
    parent_non_conformity_id: UUID | None
    damage_level: str | None = None
    impact_analysis: str | None = None
    sector: str | None = None
    responsible_user_id: UUID | None = None
    due_date: date | None = None
    root_cause_analysis: str | None = None
    corrective_actions: str | None = None
    preventive_actions: str | None = None
    effectiveness_evaluation: str | None = None
    effectiveness_date: date | None = None
    is_effective: bool | None = None
    completion_date: datetime | None = None
    created_at: datetime | None = None
    created_by_id: UUID | None = None
    updated_at: datetime | None = None

    @property
    def stage(self) -> Stage:
        return Stage(self.current_stage)

    @property
    def is_closed(self) -> bool:
        return self.status == NCStatus.CLOSED

    @property
    def is_superseded(self) -> bool:
        return self.status == NCStatus.OPEN and self.is_effective is False

    @property
    def is_active(self) -> bool:
        """Open and still driving its own workflow."""
        return self.status == NCStatus.OPEN and not self.is_superseded

    def stage_completed(self, stage: int) -> datetime | None:
        return self.stage_completed_at[stage - 1]


@dataclass(frozen=True)
class NonConformityFilter:
    status: NCStatus | None = None
    current_stage: int | None = None
    severity: Severity | None = None
    category: str | None = None
    responsible_user_id: UUID | None = None
    detected_from: date | None = None
    detected_to: date | None = None
    include_superseded: bool = True


# ---------------------------------------------------------------------------
# Stage records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImmediateActionInput:
    description: str
    responsible_user_id: UUID | None = None
    due_date: date | None = None
    status: ImmediateActionStatus | str = ImmediateActionStatus.PENDING
    evidence: str | None = None
    completion_date: date | None = None


@dataclass(frozen=True)
class ImmediateAction:
    id: UUID
    non_conformity_id: UUID
    description: str
    responsible_user_id: UUID | None
    due_date: date | None
    status: ImmediateActionStatus
    evidence: str | None
    completion_date: date | None


@dataclass(frozen=True)
class CauseAnalysisInput:
    """
    Cause analysis payload.  Which fields are required depends on the method:

    - ROOT_CAUSE / OTHER: ``root_cause``
    - ISHIKAWA: at least one cause in ``ishikawa_data`` plus ``root_cause``
    - FIVE_WHYS: at least one entry in ``five_whys`` plus ``root_cause``
    """

    analysis_method: AnalysisMethod | str
    root_cause: str = ""
    main_causes: tuple[str, ...] = ()
    ishikawa_data: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    five_whys: tuple[str, ...] = ()
    responsible_user_id: UUID | None = None
    due_date: date | None = None


@dataclass(frozen=True)
class CauseAnalysis:
    id: UUID
    non_conformity_id: UUID
    analysis_method: AnalysisMethod
    root_cause: str
    main_causes: tuple[str, ...]
    ishikawa_data: Mapping[str, tuple[str, ...]]
    five_whys: tuple[str, ...]
    responsible_user_id: UUID | None
    due_date: date | None
    completed_at: datetime | None


@dataclass(frozen=True)
class ActionPlanItemInput:
    """One 5W2H action (what, why, how, where, who, when, how much)."""

    what_action: str
    why_reason: str = ""
    how_method: str = ""
    where_location: str = ""
    who_responsible_id: UUID | None = None
    when_deadline: date | None = None
    how_much_cost: str | None = None


@dataclass(frozen=True)
class ActionPlanItem:
    id: UUID
    non_conformity_id: UUID
    order_index: int
    what_action: str
    why_reason: str
    how_method: str
    where_location: str
    who_responsible_id: UUID | None
    when_deadline: date | None
    how_much_cost: str | None
    status: ActionPlanStatus
    evidence: str | None
    completed_at: datetime | None

    @property
    def is_cancelled(self) -> bool:
        return self.status == ActionPlanStatus.CANCELLED

    @property
    def is_completed(self) -> bool:
        return self.status == ActionPlanStatus.COMPLETED


@dataclass(frozen=True)
class EffectivenessInput:
    """
    Outcome of an effectiveness check.

    Either a verdict (``is_effective`` plus ``evidence``) or a postponement
    (``postponed_to`` plus ``postponed_reason``).  Supplying both is
    rejected.
    """

    is_effective: bool | None = None
    evidence: str = ""
    requires_risk_update: bool = False
    risk_update_notes: str | None = None
    requires_sgq_change: bool = False
    sgq_change_notes: str | None = None
    postponed_to: date | None = None
    postponed_reason: str | None = None
    postponed_responsible_id: UUID | None = None

    @property
    def is_postponement(self) -> bool:
        return self.postponed_to is not None or bool(self.postponed_reason)


@dataclass(frozen=True)
class EffectivenessEvaluation:
    id: UUID
    non_conformity_id: UUID
    is_effective: bool | None
    evidence: str | None
    requires_risk_update: bool
    risk_update_notes: str | None
    requires_sgq_change: bool
    sgq_change_notes: str | None
    evaluated_by_user_id: UUID | None
    evaluated_at: datetime | None
    postponed_to: date | None
    postponed_reason: str | None
    postponed_responsible_id: UUID | None
    attempt_count: int
    generated_revision_id: UUID | None


@dataclass(frozen=True)
class EvaluationOutcome:
    """Result of ``evaluate``: the evaluated record and the revision, if one was opened."""

    non_conformity: NonConformity
    evaluation: EffectivenessEvaluation
    revision: NonConformity | None = None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Task:
    id: UUID
    organization_id: UUID
    non_conformity_id: UUID
    task_type: TaskType
    title: str
    description: str | None
    responsible_user_id: UUID | None
    due_date: date
    status: TaskStatus
    priority: TaskPriority
    completed_at: datetime | None = None
    completed_by_id: UUID | None = None
    created_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal


@dataclass(frozen=True)
class TaskFilter:
    responsible_user_id: UUID | None = None
    task_type: TaskType | None = None
    status: TaskStatus | None = None
    non_conformity_id: UUID | None = None
    open_only: bool = False
    due_before: date | None = None
