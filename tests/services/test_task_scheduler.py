"""
Tests for TaskScheduler.

These tests verify:
- Due dates and priorities come from the workflow policy
- At most one open task per (non-conformity, task type)
- Terminal tasks are never reopened or edited
- Direct operations (start, complete, cancel, reassign, reschedule)
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from nc_kernel.domain.values import Severity, Stage, TaskPriority, TaskStatus, TaskType
from nc_kernel.exceptions import (
    AlreadyCompletedError,
    AuthorizationError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.models.task import TaskModel


@pytest.fixture
def registered(registry, ctx, make_draft):
    return registry.create(ctx, make_draft())


@pytest.fixture
def registration_task(registered, task_scheduler) -> TaskModel:
    return task_scheduler.open_task(registered.id, TaskType.REGISTRATION)


# =============================================================================
# Stage-driven task creation
# =============================================================================


class TestCreateTaskForStage:
    def test_due_date_measured_from_detection(
        self, registered, session, task_scheduler, deterministic_clock, test_actor_id
    ):
        nc = session.get(NonConformityModel, registered.id)
        nc.detected_date = deterministic_clock.today() - timedelta(days=5)

        task = task_scheduler.create_task_for_stage(nc, Stage.CAUSE_ANALYSIS, test_actor_id)

        assert task.task_type == TaskType.CAUSE_ANALYSIS.value
        assert task.due_date == deterministic_clock.today() + timedelta(days=5)

    def test_late_registration_gets_a_window_from_today(
        self, registry, task_scheduler, ctx, make_draft, deterministic_clock
    ):
        nc = registry.create(
            ctx, make_draft(detected_date=deterministic_clock.today() - timedelta(days=60))
        )

        task = task_scheduler.open_task(nc.id, TaskType.REGISTRATION)

        assert task.due_date == deterministic_clock.today() + timedelta(days=1)

    @pytest.mark.parametrize(
        "severity, priority",
        [
            (Severity.CRITICAL, TaskPriority.URGENT),
            (Severity.HIGH, TaskPriority.HIGH),
            (Severity.MEDIUM, TaskPriority.NORMAL),
            (Severity.LOW, TaskPriority.LOW),
        ],
    )
    def test_priority_follows_severity(self, registry, task_scheduler, ctx, make_draft, severity, priority):
        nc = registry.create(ctx, make_draft(severity=severity))

        task = task_scheduler.open_task(nc.id, TaskType.REGISTRATION)

        assert task.priority == priority.value

    def test_second_open_task_of_same_type_rejected(self, registered, session, task_scheduler, test_actor_id):
        nc = session.get(NonConformityModel, registered.id)

        with pytest.raises(InvariantViolation):
            task_scheduler.create_task_for_stage(nc, Stage.REGISTRATION, test_actor_id)

    def test_partial_unique_index_backs_the_check(self, registered, registration_task, session, test_actor_id):
        session.add(TaskModel(
            organization_id=registered.organization_id,
            non_conformity_id=registered.id,
            task_type=TaskType.REGISTRATION.value,
            title="Duplicada",
            due_date=registration_task.due_date,
            status=TaskStatus.IN_PROGRESS.value,
            created_by_id=test_actor_id,
        ))

        with pytest.raises(IntegrityError):
            session.flush()
        session.rollback()

    def test_completed_task_does_not_block_a_new_one(
        self, registered, registration_task, session, task_scheduler, ctx, test_actor_id
    ):
        task_scheduler.complete_task(ctx, registration_task.id)
        nc = session.get(NonConformityModel, registered.id)

        task = task_scheduler.create_task_for_stage(nc, Stage.REGISTRATION, test_actor_id)

        assert task.status == TaskStatus.PENDING.value


# =============================================================================
# Direct operations
# =============================================================================


class TestCompleteTask:
    def test_complete(self, registration_task, task_scheduler, ctx, test_actor_id):
        task = task_scheduler.complete_task(ctx, registration_task.id)

        assert task.status == TaskStatus.COMPLETED
        assert task.completed_by_id == test_actor_id
        assert task.completed_at is not None

    def test_complete_twice_rejected(self, registration_task, task_scheduler, ctx):
        task_scheduler.complete_task(ctx, registration_task.id)

        with pytest.raises(AlreadyCompletedError) as exc_info:
            task_scheduler.complete_task(ctx, registration_task.id)

        assert exc_info.value.status == TaskStatus.COMPLETED.value

    def test_cancelled_task_cannot_be_completed(self, registration_task, task_scheduler, ctx):
        task_scheduler.cancel_task(ctx, registration_task.id)

        with pytest.raises(AlreadyCompletedError):
            task_scheduler.complete_task(ctx, registration_task.id)

    def test_unknown_task(self, task_scheduler, ctx):
        with pytest.raises(NotFoundError):
            task_scheduler.complete_task(ctx, uuid4())

    def test_other_organization_is_denied(self, registration_task, task_scheduler, other_tenant_ctx):
        with pytest.raises(AuthorizationError):
            task_scheduler.complete_task(other_tenant_ctx, registration_task.id)

        assert registration_task.status == TaskStatus.PENDING.value

    def test_logs_status_change(self, registration_task, task_scheduler, ctx, captured_logs):
        task_scheduler.complete_task(ctx, registration_task.id)

        events = [r for r in captured_logs() if r["message"] == "task_status_changed"]
        assert events[-1]["status"] == TaskStatus.COMPLETED.value


class TestStartTask:
    def test_start_moves_to_in_progress(self, registration_task, task_scheduler, ctx):
        task = task_scheduler.start_task(ctx, registration_task.id)

        assert task.status == TaskStatus.IN_PROGRESS

    def test_start_is_idempotent(self, registration_task, task_scheduler, ctx):
        task_scheduler.start_task(ctx, registration_task.id)

        task = task_scheduler.start_task(ctx, registration_task.id)

        assert task.status == TaskStatus.IN_PROGRESS

    def test_started_task_can_be_completed(self, registration_task, task_scheduler, ctx):
        task_scheduler.start_task(ctx, registration_task.id)

        task = task_scheduler.complete_task(ctx, registration_task.id)

        assert task.status == TaskStatus.COMPLETED

    def test_start_completed_task_rejected(self, registration_task, task_scheduler, ctx):
        task_scheduler.complete_task(ctx, registration_task.id)

        with pytest.raises(AlreadyCompletedError):
            task_scheduler.start_task(ctx, registration_task.id)


class TestReassignAndReschedule:
    def test_reassign(self, registration_task, task_scheduler, ctx):
        new_owner = uuid4()

        task = task_scheduler.reassign_task(ctx, registration_task.id, new_owner)

        assert task.responsible_user_id == new_owner

    def test_reschedule(self, registration_task, task_scheduler, ctx, deterministic_clock):
        new_due = deterministic_clock.today() + timedelta(days=30)

        task = task_scheduler.reschedule_task(ctx, registration_task.id, new_due)

        assert task.due_date == new_due

    def test_reschedule_to_today_allowed(self, registration_task, task_scheduler, ctx, deterministic_clock):
        task = task_scheduler.reschedule_task(ctx, registration_task.id, deterministic_clock.today())

        assert task.due_date == date(2024, 1, 1)

    def test_reschedule_into_past_rejected(self, registration_task, task_scheduler, ctx, deterministic_clock):
        with pytest.raises(ValidationError) as exc_info:
            task_scheduler.reschedule_task(
                ctx, registration_task.id, deterministic_clock.today() - timedelta(days=1)
            )

        assert exc_info.value.field == "due_date"

    def test_terminal_task_cannot_be_edited(self, registration_task, task_scheduler, ctx):
        task_scheduler.complete_task(ctx, registration_task.id)

        with pytest.raises(AlreadyCompletedError):
            task_scheduler.reassign_task(ctx, registration_task.id, uuid4())


# =============================================================================
# Workflow helpers
# =============================================================================


class TestWorkflowHelpers:
    def test_complete_open_task_returns_none_without_open_task(
        self, registration_task, task_scheduler, ctx, test_actor_id
    ):
        task_scheduler.complete_task(ctx, registration_task.id)

        assert task_scheduler.complete_open_task(
            registration_task.non_conformity_id, TaskType.REGISTRATION, test_actor_id
        ) is None

    def test_reprioritize_touches_only_open_tasks(
        self, registered, registration_task, session, task_scheduler, ctx, test_actor_id
    ):
        task_scheduler.complete_task(ctx, registration_task.id)

        updated = task_scheduler.reprioritize_open_tasks(registered.id, Severity.CRITICAL, test_actor_id)

        assert updated == 0
        row = session.execute(
            select(TaskModel.priority).where(TaskModel.id == registration_task.id)
        ).scalar_one()
        assert row == TaskPriority.HIGH.value
