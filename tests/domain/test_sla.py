"""
Tests for the SLA analyzer.

These tests verify:
- Bucket boundaries (overdue / due today / due soon / on time)
- Calendar-day overdue arithmetic
- Terminal tasks are ignored
- Percentages and the most-overdue ranking
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from nc_kernel.domain.dtos import Task
from nc_kernel.domain.sla import analyze_tasks, classify, days_overdue
from nc_kernel.domain.values import SlaBucket, TaskPriority, TaskStatus, TaskType

TODAY = date(2024, 3, 15)


def make_task(due_date: date, status: TaskStatus = TaskStatus.PENDING, **overrides) -> Task:
    fields = dict(
        id=uuid4(),
        organization_id=uuid4(),
        non_conformity_id=uuid4(),
        task_type=TaskType.CAUSE_ANALYSIS,
        title="Análise de Causa - NC-20240315-0001",
        description=None,
        responsible_user_id=None,
        due_date=due_date,
        status=status,
        priority=TaskPriority.NORMAL,
    )
    fields.update(overrides)
    return Task(**fields)


class TestClassification:
    """Bucket boundaries with the default three-day due-soon window."""

    @pytest.mark.parametrize(
        "offset, bucket",
        [
            (-5, SlaBucket.OVERDUE),
            (-1, SlaBucket.OVERDUE),
            (0, SlaBucket.DUE_TODAY),
            (1, SlaBucket.DUE_SOON),
            (3, SlaBucket.DUE_SOON),
            (4, SlaBucket.ON_TIME),
            (30, SlaBucket.ON_TIME),
        ],
    )
    def test_bucket_for_due_date_offset(self, offset, bucket):
        due = TODAY + timedelta(days=offset)
        assert classify(days_overdue(due, TODAY), due_soon_days=3) == bucket

    def test_days_overdue_is_calendar_difference(self):
        assert days_overdue(date(2024, 3, 10), TODAY) == 5
        assert days_overdue(date(2024, 3, 16), TODAY) == -1

    def test_days_overdue_crosses_month_and_leap_day(self):
        assert days_overdue(date(2024, 2, 28), date(2024, 3, 1)) == 2

    def test_due_soon_window_is_configurable(self):
        assert classify(-5, due_soon_days=7) == SlaBucket.DUE_SOON
        assert classify(-5, due_soon_days=3) == SlaBucket.ON_TIME


class TestAnalyzeTasks:

    def test_overdue_and_due_soon_example(self):
        overdue = make_task(TODAY - timedelta(days=5))
        soon = make_task(TODAY + timedelta(days=1))

        report = analyze_tasks([overdue, soon], TODAY)

        assert report.total == 2
        assert report.overdue == 1
        assert report.due_soon == 1
        assert report.most_overdue[0].task.id == overdue.id
        assert report.most_overdue[0].days_overdue == 5

    def test_terminal_tasks_are_ignored(self):
        tasks = [
            make_task(TODAY - timedelta(days=10), status=TaskStatus.COMPLETED),
            make_task(TODAY - timedelta(days=10), status=TaskStatus.CANCELLED),
            make_task(TODAY, status=TaskStatus.IN_PROGRESS),
        ]

        report = analyze_tasks(tasks, TODAY)

        assert report.total == 1
        assert report.due_today == 1
        assert report.overdue == 0

    def test_buckets_partition_the_open_tasks(self):
        tasks = [make_task(TODAY + timedelta(days=d)) for d in range(-6, 8)]

        report = analyze_tasks(tasks, TODAY)

        assert report.on_time + report.due_soon + report.due_today + report.overdue == report.total
        assert report.total == len(tasks)

    def test_percentages_have_one_decimal(self):
        tasks = [
            make_task(TODAY - timedelta(days=1)),
            make_task(TODAY + timedelta(days=10)),
            make_task(TODAY + timedelta(days=11)),
        ]

        report = analyze_tasks(tasks, TODAY)

        assert report.percentage(SlaBucket.OVERDUE) == Decimal("33.3")
        assert report.percentage(SlaBucket.ON_TIME) == Decimal("66.7")
        assert report.percentage(SlaBucket.DUE_TODAY) == Decimal("0.0")

    def test_empty_task_list_reports_zero_percentages(self):
        report = analyze_tasks([], TODAY)

        assert report.total == 0
        assert all(p == Decimal("0.0") for p in report.percentages.values())
        assert report.most_overdue == ()

    def test_most_overdue_ranking_and_limit(self):
        tasks = [make_task(TODAY - timedelta(days=d)) for d in (2, 9, 4, 9, 1, 7, 3)]

        report = analyze_tasks(tasks, TODAY, most_overdue_limit=3)

        days = [t.days_overdue for t in report.most_overdue]
        assert days == [9, 9, 7]
        tied = [t.task.id for t in report.most_overdue[:2]]
        assert [str(i) for i in tied] == sorted(str(i) for i in tied)

    def test_report_is_reproducible(self):
        tasks = [make_task(TODAY + timedelta(days=d)) for d in (-3, 0, 2, 5)]

        assert analyze_tasks(tasks, TODAY) == analyze_tasks(list(reversed(tasks)), TODAY)
