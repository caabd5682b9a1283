"""
Dashboard -- Pure aggregation of non-conformities and tasks.

Responsibility:
    Turns the organization's non-conformities and tasks into the headline
    numbers a quality manager looks at: open/closed/superseded counts,
    open records by stage and by severity, a monthly opened-vs-closed
    trend, task counts per type, the resolution rate, the number of open
    critical records and the SLA report.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The dashboard
    selector loads the rows and the clock's ``today``; everything here is
    recomputed from scratch on every call.

Invariants enforced:
    - Idempotent: two calls over the same rows and the same day are equal.
    - by_stage and by_severity count active records only (open and not
      superseded), and always carry every key with zero defaults.
    - Trend months are calendar months ending with the month of ``today``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from nc_kernel.domain.dtos import NonConformity, Task
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.sla import SlaReport, analyze_tasks
from nc_kernel.domain.values import Severity, Stage, TaskStatus, TaskType


@dataclass(frozen=True)
class MonthlyTrendPoint:
    month: str  # "YYYY-MM"
    opened: int
    closed: int


@dataclass(frozen=True)
class TaskTypeCount:
    task_type: TaskType
    pending: int
    completed: int


@dataclass(frozen=True)
class DashboardStats:
    as_of: date
    total: int
    total_open: int
    total_closed: int
    total_superseded: int
    by_stage: dict[int, int]
    by_severity: dict[Severity, int]
    critical_open: int
    resolution_rate: Decimal
    monthly_trend: tuple[MonthlyTrendPoint, ...]
    tasks_by_type: tuple[TaskTypeCount, ...]
    sla: SlaReport


def trend_months(today: date, months: int) -> list[tuple[int, int]]:
    """(year, month) pairs for the last ``months`` calendar months, oldest first."""
    result = []
    year, month = today.year, today.month
    for _ in range(months):
        result.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(result))


def _month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def build_dashboard_stats(
    non_conformities: Sequence[NonConformity],
    tasks: Iterable[Task],
    today: date,
    policy: WorkflowPolicy,
) -> DashboardStats:
    tasks = list(tasks)
    active = [nc for nc in non_conformities if nc.is_active]
    closed = [nc for nc in non_conformities if nc.is_closed]
    superseded = [nc for nc in non_conformities if nc.is_superseded]

    by_stage = {int(s): 0 for s in Stage}
    by_severity = {s: 0 for s in Severity}
    for nc in active:
        by_stage[nc.current_stage] += 1
        by_severity[nc.severity] += 1

    months = trend_months(today, policy.trend_months)
    opened_by_month = {_month_key(y, m): 0 for y, m in months}
    closed_by_month = dict(opened_by_month)
    for nc in non_conformities:
        if nc.created_at is not None:
            key = _month_key(nc.created_at.year, nc.created_at.month)
            if key in opened_by_month:
                opened_by_month[key] += 1
        if nc.is_closed and nc.completion_date is not None:
            key = _month_key(nc.completion_date.year, nc.completion_date.month)
            if key in closed_by_month:
                closed_by_month[key] += 1
    trend = tuple(
        MonthlyTrendPoint(month=k, opened=opened_by_month[k], closed=closed_by_month[k])
        for k in opened_by_month
    )

    tasks_by_type = tuple(
        TaskTypeCount(
            task_type=tt,
            pending=sum(1 for t in tasks if t.task_type == tt and t.is_open),
            completed=sum(1 for t in tasks if t.task_type == tt and t.status == TaskStatus.COMPLETED),
        )
        for tt in TaskType
    )

    total = len(non_conformities)
    resolution_rate = Decimal("0.0")
    if total:
        resolution_rate = (Decimal(len(closed)) * 100 / Decimal(total)).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP
        )

    return DashboardStats(
        as_of=today,
        total=total,
        total_open=len(active),
        total_closed=len(closed),
        total_superseded=len(superseded),
        by_stage=by_stage,
        by_severity=by_severity,
        critical_open=by_severity[Severity.CRITICAL],
        resolution_rate=resolution_rate,
        monthly_trend=trend,
        tasks_by_type=tasks_by_type,
        sla=analyze_tasks(
            tasks,
            today,
            due_soon_days=policy.due_soon_days,
            most_overdue_limit=policy.most_overdue_limit,
        ),
    )
