"""
SLA -- Pure timeliness classification of open tasks.

Responsibility:
    Classifies every open task by how its due date relates to today and
    summarises the result: bucket counts, bucket percentages and a ranked
    list of the most overdue tasks.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ``today`` is an
    argument; the selector obtains it from the injected Clock.

Invariants enforced:
    - Partition: every open task falls in exactly one bucket, so
      on_time + due_soon + due_today + overdue == total.
    - days_overdue is a calendar-day difference (today - due_date), not a
      24-hour difference.
    - Deterministic ranking: most overdue first, then earliest due date,
      then task id.

Bucket boundaries, with ``n = days_overdue`` and ``d = due_soon_days``:

    n > 0           OVERDUE
    n == 0          DUE_TODAY
    -d <= n < 0     DUE_SOON
    n < -d          ON_TIME
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from nc_kernel.domain.dtos import Task
from nc_kernel.domain.values import SlaBucket

_PERCENT_QUANTUM = Decimal("0.1")


@dataclass(frozen=True)
class TaskTimeliness:
    task: Task
    days_overdue: int
    bucket: SlaBucket


@dataclass(frozen=True)
class SlaReport:
    """Snapshot of task timeliness as of ``as_of``."""

    as_of: date
    total: int
    on_time: int
    due_soon: int
    due_today: int
    overdue: int
    most_overdue: tuple[TaskTimeliness, ...]

    def count(self, bucket: SlaBucket) -> int:
        return getattr(self, bucket.value)

    def percentage(self, bucket: SlaBucket) -> Decimal:
        """Share of open tasks in ``bucket``, 0-100 with one decimal.  Zero when there are no tasks."""
        if self.total == 0:
            return Decimal("0.0")
        raw = Decimal(self.count(bucket)) * 100 / Decimal(self.total)
        return raw.quantize(_PERCENT_QUANTUM, rounding=ROUND_HALF_UP)

    @property
    def percentages(self) -> dict[SlaBucket, Decimal]:
        return {b: self.percentage(b) for b in SlaBucket}


def days_overdue(due_date: date, today: date) -> int:
    """Whole calendar days between the due date and today.  Negative while time remains."""
    return (today - due_date).days


def classify(days: int, due_soon_days: int) -> SlaBucket:
    if days > 0:
        return SlaBucket.OVERDUE
    if days == 0:
        return SlaBucket.DUE_TODAY
    if days >= -due_soon_days:
        return SlaBucket.DUE_SOON
    return SlaBucket.ON_TIME


def assess(task: Task, today: date, due_soon_days: int) -> TaskTimeliness:
    days = days_overdue(task.due_date, today)
    return TaskTimeliness(task=task, days_overdue=days, bucket=classify(days, due_soon_days))


def analyze_tasks(
    tasks: Iterable[Task],
    today: date,
    due_soon_days: int = 3,
    most_overdue_limit: int = 5,
) -> SlaReport:
    """
    Build an SlaReport from tasks.  Terminal tasks are ignored.

    Pure: the same tasks and the same ``today`` always give an equal report.
    """
    assessed = [assess(t, today, due_soon_days) for t in tasks if t.is_open]
    counts = {b: 0 for b in SlaBucket}
    for a in assessed:
        counts[a.bucket] += 1

    overdue = sorted(
        (a for a in assessed if a.bucket == SlaBucket.OVERDUE),
        key=lambda a: (-a.days_overdue, a.task.due_date, str(a.task.id)),
    )

    return SlaReport(
        as_of=today,
        total=len(assessed),
        on_time=counts[SlaBucket.ON_TIME],
        due_soon=counts[SlaBucket.DUE_SOON],
        due_today=counts[SlaBucket.DUE_TODAY],
        overdue=counts[SlaBucket.OVERDUE],
        most_overdue=tuple(overdue[:most_overdue_limit]),
    )
