"""
WorkflowPolicy -- Tunable constants of the non-conformity workflow.

Responsibility:
    Carries every number that the business may tune without changing
    workflow rules: per-stage lead times, the due-soon threshold, the
    dashboard trend length, the size of the most-overdue list, the stage
    at which a revision re-enters the workflow, and the severity to task
    priority mapping.

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.  Built from YAML by
    ``nc_config.get_active_policy()``.  The kernel never reads
    configuration files itself; it receives a WorkflowPolicy by injection
    and falls back to ``WorkflowPolicy.with_defaults()``.

Invariants enforced:
    - Lead times are non-negative and non-decreasing by stage, so a later
      stage is never due before an earlier one.
    - The revision entry stage is between 2 and 4.  A revision always
      inherits its registration, and enters no later than planning since
      action plan items can only be added up to stage 4.

Failure modes:
    - ValueError at construction for any structurally invalid policy.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta
from types import MappingProxyType

from nc_kernel.domain.values import Severity, Stage, TaskPriority

DEFAULT_STAGE_LEAD_DAYS: tuple[int, ...] = (1, 3, 10, 20, 45, 90)

DEFAULT_SEVERITY_PRIORITY: Mapping[Severity, TaskPriority] = MappingProxyType({
    Severity.CRITICAL: TaskPriority.URGENT,
    Severity.HIGH: TaskPriority.HIGH,
    Severity.MEDIUM: TaskPriority.NORMAL,
    Severity.LOW: TaskPriority.LOW,
})


@dataclass(frozen=True)
class WorkflowPolicy:
    """
    Frozen set of workflow tunables.

    ``stage_lead_days[k - 1]`` is the number of days after the detection
    date by which the stage-k task is due.
    """

    config_id: str = "default"
    version: int = 1
    checksum: str = ""
    stage_lead_days: tuple[int, ...] = DEFAULT_STAGE_LEAD_DAYS
    due_soon_days: int = 3
    most_overdue_limit: int = 5
    trend_months: int = 6
    revision_entry_stage: int = Stage.IMMEDIATE_ACTION
    nc_number_prefix: str = "NC"
    severity_priority: Mapping[Severity, TaskPriority] = field(
        default_factory=lambda: DEFAULT_SEVERITY_PRIORITY
    )

    def __post_init__(self) -> None:
        if len(self.stage_lead_days) != len(Stage):
            raise ValueError(
                f"stage_lead_days must have {len(Stage)} entries, got {len(self.stage_lead_days)}"
            )
        if any(d < 0 for d in self.stage_lead_days):
            raise ValueError("stage_lead_days must be non-negative")
        if list(self.stage_lead_days) != sorted(self.stage_lead_days):
            raise ValueError("stage_lead_days must be non-decreasing by stage")
        if self.due_soon_days < 1:
            raise ValueError("due_soon_days must be at least 1")
        if self.most_overdue_limit < 1:
            raise ValueError("most_overdue_limit must be at least 1")
        if self.trend_months < 1:
            raise ValueError("trend_months must be at least 1")
        if not Stage.IMMEDIATE_ACTION <= self.revision_entry_stage <= Stage.PLANNING:
            raise ValueError("revision_entry_stage must be between 2 and 4")
        missing = set(Severity) - set(self.severity_priority)
        if missing:
            raise ValueError(
                f"severity_priority is missing {sorted(s.value for s in missing)}"
            )
        if not self.nc_number_prefix:
            raise ValueError("nc_number_prefix must be non-empty")

    @classmethod
    def with_defaults(cls) -> WorkflowPolicy:
        return cls()

    def lead_days(self, stage: int) -> int:
        return self.stage_lead_days[stage - 1]

    def stage_window_days(self, stage: int) -> int:
        """Days allotted to a stage on its own (its lead minus the previous stage's lead)."""
        previous = self.stage_lead_days[stage - 2] if stage > 1 else 0
        return max(self.lead_days(stage) - previous, 1)

    def due_date_for(self, stage: int, detected_date: date, today: date) -> date:
        """
        Due date of the task for ``stage``.

        Measured from the detection date.  When that date already lies in
        the past (late registrations, revisions of old records) the task is
        due one stage window after today instead.
        """
        due = detected_date + timedelta(days=self.lead_days(stage))
        if due < today:
            due = today + timedelta(days=self.stage_window_days(stage))
        return due

    def priority_for(self, severity: Severity) -> TaskPriority:
        return self.severity_priority[severity]
