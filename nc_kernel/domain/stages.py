"""
Stages -- The six-stage corrective action state machine.

Responsibility:
    Declares the non-conformity workflow as data (``NC_STAGE_WORKFLOW``),
    the guard protecting each stage exit, and the pure functions that
    decide whether a snapshot of a non-conformity satisfies that guard.
    Also validates the stage payloads submitted by callers before they are
    stored.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The stage
    controller loads a ``StageSnapshot`` and asks ``unmet_exit_requirement``;
    the stage record stores call the ``validate_*`` functions.

Invariants enforced:
    - Stage exit requirements: each ``advance`` transition carries a guard,
      and every guard name has exactly one evaluator in
      ``EXIT_REQUIREMENT_EVALUATORS``.
    - Stage 6 has no ``advance`` transition.  It ends only through an
      effectiveness evaluation.

Failure modes:
    - ``validate_*`` raise ValidationError naming the offending field.
    - Evaluators never raise; they return the reason the guard fails or
      None.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date

from nc_kernel.domain.dtos import (
    ActionPlanItem,
    ActionPlanItemInput,
    CauseAnalysis,
    CauseAnalysisInput,
    EffectivenessEvaluation,
    EffectivenessInput,
    ImmediateAction,
    ImmediateActionInput,
    NonConformity,
    NonConformityDraft,
)
from nc_kernel.domain.values import (
    AnalysisMethod,
    ImmediateActionStatus,
    Severity,
    Stage,
    coerce_enum,
)
from nc_kernel.domain.workflow import Guard, Transition, Workflow
from nc_kernel.exceptions import ValidationError

# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

REGISTRATION_COMPLETE = Guard(
    name="registration_complete",
    description="Title, category, severity and detection date are recorded",
)
IMMEDIATE_ACTION_RECORDED = Guard(
    name="immediate_action_recorded",
    description="An immediate containment action is recorded and not cancelled",
)
CAUSE_ANALYSIS_RECORDED = Guard(
    name="cause_analysis_recorded",
    description="A cause analysis is recorded and populated for its method",
)
ACTION_PLAN_DEFINED = Guard(
    name="action_plan_defined",
    description="At least one action plan item is defined and not cancelled",
)
ACTION_PLAN_IMPLEMENTED = Guard(
    name="action_plan_implemented",
    description="Every non-cancelled action plan item is completed",
)

# ---------------------------------------------------------------------------
# Workflow definition
# ---------------------------------------------------------------------------

CLOSED_STATE = "closed"
SUPERSEDED_STATE = "superseded"

ADVANCE = "advance"
EVALUATE_EFFECTIVE = "evaluate_effective"
EVALUATE_INEFFECTIVE = "evaluate_ineffective"
POSTPONE = "postpone"

NC_STAGE_WORKFLOW = Workflow(
    name="non_conformity",
    description="Corrective/preventive action lifecycle of a non-conformity",
    initial_state=Stage.REGISTRATION.state_name,
    states=tuple(s.state_name for s in Stage) + (CLOSED_STATE, SUPERSEDED_STATE),
    transitions=(
        Transition("registration", "immediate_action", action=ADVANCE, guard=REGISTRATION_COMPLETE),
        Transition("immediate_action", "cause_analysis", action=ADVANCE, guard=IMMEDIATE_ACTION_RECORDED),
        Transition("cause_analysis", "planning", action=ADVANCE, guard=CAUSE_ANALYSIS_RECORDED),
        Transition("planning", "implementation", action=ADVANCE, guard=ACTION_PLAN_DEFINED),
        Transition("implementation", "effectiveness", action=ADVANCE, guard=ACTION_PLAN_IMPLEMENTED),
        Transition("effectiveness", "effectiveness", action=POSTPONE),
        Transition("effectiveness", CLOSED_STATE, action=EVALUATE_EFFECTIVE),
        Transition("effectiveness", SUPERSEDED_STATE, action=EVALUATE_INEFFECTIVE),
    ),
    terminal_states=(CLOSED_STATE, SUPERSEDED_STATE),
)


def workflow_state(nc: NonConformity) -> str:
    """Name of the workflow state a non-conformity is in."""
    if nc.is_closed:
        return CLOSED_STATE
    if nc.is_superseded:
        return SUPERSEDED_STATE
    return nc.stage.state_name


# ---------------------------------------------------------------------------
# Snapshot and exit requirements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageSnapshot:
    """Everything needed to decide whether the current stage may be left."""

    non_conformity: NonConformity
    immediate_action: ImmediateAction | None = None
    cause_analysis: CauseAnalysis | None = None
    action_plan: tuple[ActionPlanItem, ...] = ()
    effectiveness: EffectivenessEvaluation | None = None

    @property
    def live_action_plan(self) -> tuple[ActionPlanItem, ...]:
        return tuple(i for i in self.action_plan if not i.is_cancelled)


def _registration_complete(s: StageSnapshot) -> str | None:
    nc = s.non_conformity
    for name in ("title", "category"):
        if not (getattr(nc, name) or "").strip():
            return f"{name} is empty"
    return None


def _immediate_action_recorded(s: StageSnapshot) -> str | None:
    ia = s.immediate_action
    if ia is None:
        return "no immediate action recorded"
    if ia.status == ImmediateActionStatus.CANCELLED:
        return "immediate action is cancelled"
    if not ia.description.strip():
        return "immediate action has no description"
    return None


def _cause_analysis_recorded(s: StageSnapshot) -> str | None:
    ca = s.cause_analysis
    if ca is None:
        return "no cause analysis recorded"
    gap = cause_analysis_gap(ca.analysis_method, ca.root_cause, ca.ishikawa_data, ca.five_whys)
    return gap[1] if gap else None


def _action_plan_defined(s: StageSnapshot) -> str | None:
    if not s.live_action_plan:
        return "action plan has no active items"
    return None


def _action_plan_implemented(s: StageSnapshot) -> str | None:
    live = s.live_action_plan
    if not live:
        return "action plan has no active items"
    pending = [i.order_index for i in live if not i.is_completed]
    if pending:
        return f"action plan items {pending} are not completed"
    return None


EXIT_REQUIREMENT_EVALUATORS: dict[str, Callable[[StageSnapshot], str | None]] = {
    REGISTRATION_COMPLETE.name: _registration_complete,
    IMMEDIATE_ACTION_RECORDED.name: _immediate_action_recorded,
    CAUSE_ANALYSIS_RECORDED.name: _cause_analysis_recorded,
    ACTION_PLAN_DEFINED.name: _action_plan_defined,
    ACTION_PLAN_IMPLEMENTED.name: _action_plan_implemented,
}


def advance_transition(stage: Stage) -> Transition | None:
    """The ``advance`` transition out of ``stage``, or None for stage 6."""
    return NC_STAGE_WORKFLOW.find_transition(stage.state_name, ADVANCE)


def unmet_exit_requirement(snapshot: StageSnapshot) -> tuple[Guard, str] | None:
    """
    Evaluate the guard on the current stage's ``advance`` transition.

    Returns (guard, reason) when the stage cannot be left, None otherwise.
    Stage 6 has no advance transition; callers must check that first.
    """
    transition = advance_transition(snapshot.non_conformity.stage)
    if transition is None or transition.guard is None:
        return None
    reason = EXIT_REQUIREMENT_EVALUATORS[transition.guard.name](snapshot)
    if reason is None:
        return None
    return transition.guard, reason


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------


def _require_text(entity_type: str, field: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(entity_type, field, "is required")
    return str(value).strip()


def validate_draft(draft: NonConformityDraft) -> NonConformityDraft:
    """Check a registration draft and return it with severity coerced to the enum."""
    _require_text("non_conformity", "title", draft.title)
    _require_text("non_conformity", "category", draft.category)
    if draft.detected_date is None:
        raise ValidationError("non_conformity", "detected_date", "is required")
    if not isinstance(draft.detected_date, date):
        raise ValidationError("non_conformity", "detected_date", "must be a date")
    severity = coerce_enum(Severity, draft.severity, "non_conformity", "severity")
    if draft.due_date is not None and draft.due_date < draft.detected_date:
        raise ValidationError("non_conformity", "due_date", "is before the detection date")
    return replace(
        draft,
        title=draft.title.strip(),
        category=draft.category.strip(),
        severity=severity,
    )


def validate_immediate_action(payload: ImmediateActionInput) -> ImmediateActionStatus:
    _require_text("immediate_action", "description", payload.description)
    status = coerce_enum(ImmediateActionStatus, payload.status, "immediate_action", "status")
    if status == ImmediateActionStatus.COMPLETED and payload.completion_date is None:
        raise ValidationError("immediate_action", "completion_date", "is required when completed")
    return status


def cause_analysis_gap(method, root_cause, ishikawa_data, five_whys) -> tuple[str, str] | None:
    """(field, reason) a cause analysis still lacks for its method, or None if populated."""
    if not (root_cause or "").strip():
        return "root_cause", "root cause is empty"
    if method == AnalysisMethod.ISHIKAWA:
        if not any(str(c).strip() for causes in ishikawa_data.values() for c in causes):
            return "ishikawa_data", "ishikawa diagram has no causes"
    elif method == AnalysisMethod.FIVE_WHYS:
        if not any(str(w).strip() for w in five_whys):
            return "five_whys", "five whys has no answers"
    return None


def validate_cause_analysis(payload: CauseAnalysisInput) -> AnalysisMethod:
    method = coerce_enum(AnalysisMethod, payload.analysis_method, "cause_analysis", "analysis_method")
    gap = cause_analysis_gap(method, payload.root_cause, payload.ishikawa_data, payload.five_whys)
    if gap is not None:
        raise ValidationError("cause_analysis", *gap)
    return method


def validate_action_plan_item(payload: ActionPlanItemInput) -> None:
    _require_text("action_plan_item", "what_action", payload.what_action)


def validate_effectiveness(payload: EffectivenessInput, today: date) -> None:
    """
    A postponement needs a future date and a reason.  A verdict needs
    ``is_effective`` and evidence.  The two are mutually exclusive.
    """
    if payload.is_postponement:
        if payload.is_effective is not None:
            raise ValidationError(
                "effectiveness", "is_effective", "cannot be set on a postponement"
            )
        if payload.postponed_to is None:
            raise ValidationError("effectiveness", "postponed_to", "is required to postpone")
        if payload.postponed_to < today:
            raise ValidationError("effectiveness", "postponed_to", "is in the past")
        _require_text("effectiveness", "postponed_reason", payload.postponed_reason)
        return
    if payload.is_effective is None:
        raise ValidationError("effectiveness", "is_effective", "is required")
    _require_text("effectiveness", "evidence", payload.evidence)
    if payload.requires_risk_update:
        _require_text("effectiveness", "risk_update_notes", payload.risk_update_notes)
    if payload.requires_sgq_change:
        _require_text("effectiveness", "sgq_change_notes", payload.sgq_change_notes)
