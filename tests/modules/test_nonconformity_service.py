"""
Tests for the NonConformityService facade.

These tests verify:
- The end-to-end scenarios of the workflow (registration to revision)
- Every call is one transaction: committed on success, rolled back on error
- Tenant isolation and caller roles
- Persistence failures surface as DependencyError
- Reporting (SLA report, dashboard) reflects committed state
- Repeated reopenings chain revisions with one open task on the newest
"""

from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from nc_kernel.domain.dtos import (
    EffectivenessInput,
    ImmediateActionInput,
    NonConformityFilter,
    TaskFilter,
)
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.values import (
    NCStatus,
    Severity,
    SlaBucket,
    Stage,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from nc_kernel.exceptions import (
    AlreadyCompletedError,
    AuthorizationError,
    DependencyError,
    InvariantViolation,
    NotFoundError,
    StaleStageError,
)

INEFFECTIVE = EffectivenessInput(is_effective=False, evidence="Reincidência no lote 4502")


def _open_task(service, ctx, nc_id, task_type):
    (task,) = service.list_tasks(
        ctx, TaskFilter(non_conformity_id=nc_id, task_type=task_type, open_only=True)
    )
    return task


# =============================================================================
# Workflow scenarios
# =============================================================================


class TestWorkflowScenarios:
    def test_registration_opens_pending_task(self, service, ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft(severity=Severity.HIGH))

        (task,) = service.list_tasks(ctx, TaskFilter(non_conformity_id=nc.id))
        assert nc.current_stage == 1
        assert nc.status == NCStatus.OPEN
        assert task.task_type == TaskType.REGISTRATION
        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.HIGH

    def test_advance_after_immediate_action(self, service, ctx, nc_at_stage):
        nc = nc_at_stage(2)
        service.submit_immediate_action(ctx, nc.id, ImmediateActionInput(description="Lote segregado"))

        advanced = service.advance_stage(ctx, nc.id, expected_current_stage=2)

        assert advanced.current_stage == 3
        assert service.get_non_conformity(ctx, nc.id).current_stage == 3
        assert _open_task(service, ctx, nc.id, TaskType.CAUSE_ANALYSIS).status == TaskStatus.PENDING

    def test_stale_advance_is_rejected(self, service, ctx, nc_at_stage):
        nc = nc_at_stage(2)

        with pytest.raises(StaleStageError):
            service.advance_stage(ctx, nc.id, expected_current_stage=1)

        assert service.get_non_conformity(ctx, nc.id).current_stage == 2

    def test_ineffective_evaluation_opens_revision(self, service, ctx, nc_at_stage):
        nc = nc_at_stage(6)

        outcome = service.evaluate_effectiveness(ctx, nc.id, INEFFECTIVE)

        revision = service.get_non_conformity(ctx, outcome.revision.id)
        assert revision.revision_number == 1
        assert revision.parent_non_conformity_id == nc.id
        assert revision.current_stage == Stage.IMMEDIATE_ACTION
        assert _open_task(service, ctx, revision.id, TaskType.IMMEDIATE_ACTION).status == TaskStatus.PENDING
        assert service.get_effectiveness_evaluation(ctx, nc.id).generated_revision_id == revision.id

    def test_sla_report_buckets(self, service, ctx, make_draft, deterministic_clock):
        service.create_non_conformity(ctx, make_draft())
        deterministic_clock.advance_days(6)
        service.create_non_conformity(ctx, make_draft(detected_date=deterministic_clock.today()))

        report = service.get_sla_report(ctx)

        assert report.as_of == deterministic_clock.today()
        assert report.total == 2
        assert report.overdue == 1
        assert report.due_soon == 1
        assert report.most_overdue[0].days_overdue == 5
        assert report.percentage(SlaBucket.OVERDUE) == 50

    def test_completing_task_twice_is_rejected(self, service, ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft())
        task = _open_task(service, ctx, nc.id, TaskType.REGISTRATION)
        service.complete_task(ctx, task.id)

        with pytest.raises(AlreadyCompletedError):
            service.complete_task(ctx, task.id)

    def test_effective_evaluation_closes(self, service, ctx, nc_at_stage):
        nc = nc_at_stage(6)

        outcome = service.evaluate_effectiveness(
            ctx, nc.id, EffectivenessInput(is_effective=True, evidence="Sem reincidência em 90 dias")
        )

        assert outcome.revision is None
        assert service.get_non_conformity(ctx, nc.id).status == NCStatus.CLOSED
        assert service.list_tasks(ctx, TaskFilter(non_conformity_id=nc.id, open_only=True)) == []


# =============================================================================
# Revision chains
# =============================================================================


class TestRevisionChains:
    def test_second_reopening_revises_the_revision(self, service, ctx, nc_at_stage, drive_to):
        nc = nc_at_stage(6)
        first = service.evaluate_effectiveness(ctx, nc.id, INEFFECTIVE).revision
        first = drive_to(first, 6)

        second = service.evaluate_effectiveness(ctx, first.id, INEFFECTIVE).revision

        assert second.revision_number == 2
        assert second.parent_non_conformity_id == first.id
        chain = service.get_revision_chain(ctx, nc.id)
        assert [n.id for n in chain] == [nc.id, first.id, second.id]
        assert [n.revision_number for n in chain] == [0, 1, 2]
        (open_task,) = service.list_tasks(ctx, TaskFilter(open_only=True))
        assert open_task.non_conformity_id == second.id
        assert open_task.task_type == TaskType.IMMEDIATE_ACTION

    def test_only_newest_record_stays_workable(self, service, ctx, nc_at_stage, drive_to):
        nc = nc_at_stage(6)
        first = drive_to(service.evaluate_effectiveness(ctx, nc.id, INEFFECTIVE).revision, 6)
        second = service.evaluate_effectiveness(ctx, first.id, INEFFECTIVE).revision

        visible = service.list_non_conformities(ctx, NonConformityFilter(include_superseded=False))

        assert [n.id for n in visible] == [second.id]


class TestRevisionEnteringAtPlanning:
    @pytest.fixture
    def policy(self):
        return replace(WorkflowPolicy.with_defaults(), revision_entry_stage=Stage.PLANNING)

    def test_revision_reaches_closure(self, service, ctx, nc_at_stage, drive_to):
        nc = nc_at_stage(6)
        revision = service.evaluate_effectiveness(ctx, nc.id, INEFFECTIVE).revision
        assert revision.current_stage == Stage.PLANNING
        assert service.list_action_plan_items(ctx, revision.id) == []

        revision = drive_to(revision, 6)
        outcome = service.evaluate_effectiveness(
            ctx, revision.id, EffectivenessInput(is_effective=True, evidence="Sem reincidência em 90 dias")
        )

        closed = service.get_non_conformity(ctx, revision.id)
        assert outcome.revision is None
        assert closed.status == NCStatus.CLOSED
        assert all(closed.stage_completed(k) is not None for k in range(1, 7))
        assert service.list_tasks(ctx, TaskFilter(open_only=True)) == []


# =============================================================================
# Transactions
# =============================================================================


class TestTransactions:
    def test_rejected_call_writes_nothing(self, service, ctx, nc_at_stage):
        nc = nc_at_stage(5)
        (item,) = service.list_action_plan_items(ctx, nc.id)

        with pytest.raises(InvariantViolation):
            service.cancel_action_plan_item(ctx, item.id)

        (item,) = service.list_action_plan_items(ctx, nc.id)
        assert not item.is_cancelled

    def test_persistence_failure_is_wrapped(self, service, session, ctx, make_draft, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "commit", failing_commit)

        with pytest.raises(DependencyError) as exc_info:
            service.create_non_conformity(ctx, make_draft())

        assert exc_info.value.operation == "create_non_conformity"
        assert exc_info.value.cause_type == "OperationalError"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert service.list_non_conformities(ctx) == []

    def test_rejection_is_logged_with_context(self, service, ctx, nc_at_stage, captured_logs):
        nc = nc_at_stage(2)

        with pytest.raises(StaleStageError):
            service.advance_stage(ctx, nc.id, expected_current_stage=1)

        (event,) = [r for r in captured_logs() if r["message"] == "operation_rejected"]
        assert event["error_code"] == "STALE_STAGE"
        assert event["operation"] == "advance_stage"
        assert event["nc_id"] == str(nc.id)


# =============================================================================
# Tenants and roles
# =============================================================================


class TestAccess:
    def test_other_tenant_cannot_read(self, service, ctx, other_tenant_ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft())

        with pytest.raises(AuthorizationError):
            service.get_non_conformity(other_tenant_ctx, nc.id)

    def test_other_tenant_cannot_advance(self, service, ctx, other_tenant_ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft())

        with pytest.raises(AuthorizationError):
            service.advance_stage(other_tenant_ctx, nc.id, expected_current_stage=1)

        assert service.get_non_conformity(ctx, nc.id).current_stage == 1

    def test_lists_are_scoped_to_the_tenant(self, service, ctx, other_tenant_ctx, make_draft):
        service.create_non_conformity(ctx, make_draft())

        assert service.list_non_conformities(other_tenant_ctx) == []
        assert service.list_tasks(other_tenant_ctx) == []
        assert service.get_dashboard_stats(other_tenant_ctx).total == 0

    def test_viewer_can_read(self, service, ctx, viewer_ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft())

        assert service.get_non_conformity(viewer_ctx, nc.id).id == nc.id

    def test_viewer_cannot_write(self, service, ctx, viewer_ctx, make_draft, captured_logs):
        nc = service.create_non_conformity(ctx, make_draft())

        with pytest.raises(AuthorizationError) as exc_info:
            service.update_non_conformity(viewer_ctx, nc.id, {"title": "Outro"})

        assert exc_info.value.reason == "caller has read-only access"
        assert any(r["message"] == "operation_forbidden" for r in captured_logs())

    def test_delete_requires_admin(self, service, ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft())

        with pytest.raises(AuthorizationError):
            service.delete_non_conformity(ctx, nc.id)

    def test_admin_deletes(self, service, ctx, admin_ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft())

        service.delete_non_conformity(admin_ctx, nc.id)

        with pytest.raises(NotFoundError):
            service.get_non_conformity(ctx, nc.id)
        assert service.list_tasks(ctx) == []


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    def test_revision_chain(self, service, ctx, nc_at_stage):
        nc = nc_at_stage(6)
        revision = service.evaluate_effectiveness(ctx, nc.id, INEFFECTIVE).revision

        chain = service.get_revision_chain(ctx, nc.id)

        assert [n.id for n in chain] == [nc.id, revision.id]
        assert service.get_revision_chain(ctx, revision.id) == chain

    def test_single_record_chain(self, service, ctx, make_draft):
        nc = service.create_non_conformity(ctx, make_draft())

        assert [n.id for n in service.get_revision_chain(ctx, nc.id)] == [nc.id]

    def test_filter_by_severity_and_stage(self, service, ctx, make_draft, nc_at_stage):
        critical = service.create_non_conformity(ctx, make_draft(severity=Severity.CRITICAL))
        service.create_non_conformity(ctx, make_draft(severity=Severity.LOW))
        advanced = nc_at_stage(3, severity=Severity.LOW)

        by_severity = service.list_non_conformities(ctx, NonConformityFilter(severity=Severity.CRITICAL))
        by_stage = service.list_non_conformities(ctx, NonConformityFilter(current_stage=3))

        assert [n.id for n in by_severity] == [critical.id]
        assert [n.id for n in by_stage] == [advanced.id]

    def test_superseded_records_can_be_hidden(self, service, ctx, nc_at_stage):
        nc = nc_at_stage(6)
        revision = service.evaluate_effectiveness(ctx, nc.id, INEFFECTIVE).revision

        visible = service.list_non_conformities(ctx, NonConformityFilter(include_superseded=False))

        assert [n.id for n in visible] == [revision.id]
        assert len(service.list_non_conformities(ctx)) == 2

    def test_limit(self, service, ctx, make_draft):
        for _ in range(3):
            service.create_non_conformity(ctx, make_draft())

        assert len(service.list_non_conformities(ctx, limit=2)) == 2

    def test_my_tasks(self, service, ctx, make_draft, test_actor_id):
        mine = service.create_non_conformity(ctx, make_draft(responsible_user_id=test_actor_id))
        service.create_non_conformity(ctx, make_draft(responsible_user_id=uuid4()))

        tasks = service.list_my_tasks(ctx)

        assert [t.non_conformity_id for t in tasks] == [mine.id]

    def test_reassigned_task_moves_to_new_owner(self, service, ctx, make_draft, test_actor_id):
        nc = service.create_non_conformity(ctx, make_draft(responsible_user_id=test_actor_id))
        task = _open_task(service, ctx, nc.id, TaskType.REGISTRATION)

        service.reassign_task(ctx, task.id, uuid4())

        assert service.list_my_tasks(ctx) == []

    def test_dashboard_counts(self, service, ctx, make_draft, nc_at_stage):
        service.create_non_conformity(ctx, make_draft(severity=Severity.CRITICAL))
        superseded = nc_at_stage(6)
        service.evaluate_effectiveness(ctx, superseded.id, INEFFECTIVE)

        stats = service.get_dashboard_stats(ctx)

        assert stats.total == 3
        assert stats.total_open == 2
        assert stats.total_superseded == 1
        assert stats.total_closed == 0
        assert stats.critical_open == 1
        assert (stats.by_stage[1], stats.by_stage[2], sum(stats.by_stage.values())) == (1, 1, 2)
        assert stats.sla.total == 2

    def test_reschedule_through_facade(self, service, ctx, make_draft, deterministic_clock):
        nc = service.create_non_conformity(ctx, make_draft())
        task = _open_task(service, ctx, nc.id, TaskType.REGISTRATION)
        new_due = deterministic_clock.today() + timedelta(days=14)

        service.reschedule_task(ctx, task.id, new_due)

        assert _open_task(service, ctx, nc.id, TaskType.REGISTRATION).due_date == new_due
