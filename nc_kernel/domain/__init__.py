"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through an injected Clock or an explicit ``today``.
"""

from nc_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from nc_kernel.domain.dashboard import DashboardStats, build_dashboard_stats
from nc_kernel.domain.dtos import (
    ActionPlanItem,
    ActionPlanItemInput,
    CallerContext,
    CauseAnalysis,
    CauseAnalysisInput,
    EffectivenessEvaluation,
    EffectivenessInput,
    EvaluationOutcome,
    ImmediateAction,
    ImmediateActionInput,
    NonConformity,
    NonConformityDraft,
    NonConformityFilter,
    Task,
    TaskFilter,
)
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.sla import SlaReport, analyze_tasks
from nc_kernel.domain.stages import NC_STAGE_WORKFLOW, StageSnapshot
from nc_kernel.domain.values import (
    ActionPlanStatus,
    AnalysisMethod,
    CallerRole,
    ImmediateActionStatus,
    NCStatus,
    Severity,
    SlaBucket,
    Stage,
    TaskPriority,
    TaskStatus,
    TaskType,
)

__all__ = [
    # Time
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Vocabulary
    "Severity",
    "NCStatus",
    "Stage",
    "TaskType",
    "TaskStatus",
    "TaskPriority",
    "AnalysisMethod",
    "ActionPlanStatus",
    "ImmediateActionStatus",
    "CallerRole",
    "SlaBucket",
    # DTOs
    "CallerContext",
    "NonConformity",
    "NonConformityDraft",
    "NonConformityFilter",
    "ImmediateAction",
    "ImmediateActionInput",
    "CauseAnalysis",
    "CauseAnalysisInput",
    "ActionPlanItem",
    "ActionPlanItemInput",
    "EffectivenessEvaluation",
    "EffectivenessInput",
    "EvaluationOutcome",
    "Task",
    "TaskFilter",
    # Workflow
    "NC_STAGE_WORKFLOW",
    "StageSnapshot",
    "WorkflowPolicy",
    # Read side
    "SlaReport",
    "analyze_tasks",
    "DashboardStats",
    "build_dashboard_stats",
]
