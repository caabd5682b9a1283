"""
Non-Conformity Module Service (``nc_modules.nonconformity.service``).

Responsibility
--------------
Exposes every non-conformity operation to callers: record lifecycle,
stage payloads, stage advance, effectiveness verdicts, direct task
operations and reports.  Each public method is one unit of work.

Architecture position
---------------------
**Modules layer** -- thin glue.  Composes the kernel services
(``NonConformityRegistry``, the stage record stores,
``StageWorkflowController``, ``RevisionManager``, ``TaskScheduler``) and
the selectors over one shared session.

Invariants enforced
-------------------
* Each public method owns the transaction boundary: ``commit`` on success,
  ``rollback`` on any exception.  A failed operation leaves no partial
  writes (an advance never commits without its task rotation).
* Role checks happen before any read: viewers may only read, deletion is
  reserved to administrators.
* Tenant isolation is delegated to the kernel ownership checks and the
  selectors' organization filter.

Failure modes
-------------
* ``NCKernelError`` subclasses propagate unchanged after rollback.
* ``SQLAlchemyError``  -> rollback, then ``DependencyError`` raised from
  the original exception.
* Anything else  -> rollback, logged with its traceback, re-raised.

Audit relevance
---------------
Every call binds the caller, organization, operation and target ids into
the ``LogContext`` so all kernel log lines of the operation carry them.
Rejections are logged at WARNING with the error code.

Usage::

    service = NonConformityService(session, policy=get_active_policy())
    nc = service.create_non_conformity(ctx, NonConformityDraft(
        title="Peça fora de especificação", category="Produto",
        severity="Alta", detected_date=date.today(),
    ))
    service.submit_immediate_action(ctx, nc.id, ImmediateActionInput(
        description="Lote segregado",
    ))
    nc = service.advance_stage(ctx, nc.id, expected_current_stage=1)
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nc_kernel.domain.clock import Clock, SystemClock
from nc_kernel.domain.dashboard import DashboardStats
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
from nc_kernel.domain.sla import SlaReport
from nc_kernel.exceptions import AuthorizationError, DependencyError, NCKernelError
from nc_kernel.logging_config import LogContext, get_logger
from nc_kernel.selectors.dashboard_selector import DashboardSelector
from nc_kernel.selectors.nc_selector import NonConformitySelector
from nc_kernel.selectors.task_selector import TaskSelector
from nc_kernel.services.registry_service import NonConformityRegistry
from nc_kernel.services.revision_service import RevisionManager
from nc_kernel.services.sequence_service import SequenceService
from nc_kernel.services.stage_record_service import (
    ActionPlanStore,
    CauseAnalysisStore,
    ImmediateActionStore,
)
from nc_kernel.services.stage_workflow import StageWorkflowController
from nc_kernel.services.task_scheduler import TaskScheduler

logger = get_logger("modules.nonconformity.service")

_READ, _WRITE, _ADMIN = "read", "write", "admin"


class NonConformityService:
    """
    Facade over the non-conformity kernel.

    Contract
    --------
    * Mutations return the mutated entity as a frozen DTO.
    * Reads return DTOs or reports; nothing returned is bound to the session.

    Guarantees
    ----------
    * Session is committed only when the whole operation succeeded.
    * Clock and policy are injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT authenticate callers; the ``CallerContext`` is trusted.
    * Does NOT retry.  ``StaleStageError`` is the caller's cue to re-read
      and try again.
    """

    def __init__(
        self,
        session: Session,
        policy: WorkflowPolicy | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or WorkflowPolicy.with_defaults()

        sequences = SequenceService(session)
        self._tasks = TaskScheduler(session, policy=self._policy, clock=self._clock)
        self._registry = NonConformityRegistry(
            session, self._tasks, sequences, policy=self._policy, clock=self._clock
        )
        self._immediate_actions = ImmediateActionStore(session, self._clock)
        self._cause_analyses = CauseAnalysisStore(session, self._clock)
        self._action_plans = ActionPlanStore(session, self._clock)
        self._workflow = StageWorkflowController(session, self._tasks, clock=self._clock)
        self._revisions = RevisionManager(
            session, self._tasks, sequences, policy=self._policy, clock=self._clock
        )

        self._nc_selector = NonConformitySelector(session)
        self._task_selector = TaskSelector(session)
        self._dashboard = DashboardSelector(session, policy=self._policy, clock=self._clock)

    @property
    def policy(self) -> WorkflowPolicy:
        return self._policy

    # =========================================================================
    # Non-conformity records
    # =========================================================================

    def create_non_conformity(self, ctx: CallerContext, draft: NonConformityDraft) -> NonConformity:
        """Register a non-conformity at stage 1 with its registration task."""
        with self._unit(ctx, "create_non_conformity", _WRITE):
            return self._registry.create(ctx, draft)

    def get_non_conformity(self, ctx: CallerContext, nc_id: UUID) -> NonConformity:
        with self._unit(ctx, "get_non_conformity", _READ, nc_id=nc_id):
            return self._nc_selector.get(ctx, nc_id)

    def list_non_conformities(
        self,
        ctx: CallerContext,
        filters: NonConformityFilter | None = None,
        limit: int | None = None,
    ) -> list[NonConformity]:
        with self._unit(ctx, "list_non_conformities", _READ):
            return self._nc_selector.list_records(ctx, filters, limit=limit)

    def update_non_conformity(
        self, ctx: CallerContext, nc_id: UUID, fields: Mapping[str, Any]
    ) -> NonConformity:
        """Patch descriptive fields.  Workflow-owned fields are rejected."""
        with self._unit(ctx, "update_non_conformity", _WRITE, nc_id=nc_id):
            return self._registry.patch(ctx, nc_id, fields)

    def delete_non_conformity(self, ctx: CallerContext, nc_id: UUID) -> None:
        """Administrative removal of a record with all of its stage records and tasks."""
        with self._unit(ctx, "delete_non_conformity", _ADMIN, nc_id=nc_id):
            self._registry.delete(ctx, nc_id)

    def get_revision_chain(self, ctx: CallerContext, nc_id: UUID) -> list[NonConformity]:
        with self._unit(ctx, "get_revision_chain", _READ, nc_id=nc_id):
            return self._nc_selector.revision_chain(ctx, nc_id)

    # =========================================================================
    # Stage payloads
    # =========================================================================

    def submit_immediate_action(
        self, ctx: CallerContext, nc_id: UUID, payload: ImmediateActionInput
    ) -> ImmediateAction:
        with self._unit(ctx, "submit_immediate_action", _WRITE, nc_id=nc_id):
            return self._immediate_actions.submit(ctx, nc_id, payload)

    def get_immediate_action(self, ctx: CallerContext, nc_id: UUID) -> ImmediateAction | None:
        with self._unit(ctx, "get_immediate_action", _READ, nc_id=nc_id):
            return self._immediate_actions.get(ctx, nc_id)

    def submit_cause_analysis(
        self, ctx: CallerContext, nc_id: UUID, payload: CauseAnalysisInput
    ) -> CauseAnalysis:
        with self._unit(ctx, "submit_cause_analysis", _WRITE, nc_id=nc_id):
            return self._cause_analyses.submit(ctx, nc_id, payload)

    def get_cause_analysis(self, ctx: CallerContext, nc_id: UUID) -> CauseAnalysis | None:
        with self._unit(ctx, "get_cause_analysis", _READ, nc_id=nc_id):
            return self._cause_analyses.get(ctx, nc_id)

    def add_action_plan_item(
        self, ctx: CallerContext, nc_id: UUID, payload: ActionPlanItemInput
    ) -> ActionPlanItem:
        with self._unit(ctx, "add_action_plan_item", _WRITE, nc_id=nc_id):
            return self._action_plans.add(ctx, nc_id, payload)

    def complete_action_plan_item(
        self, ctx: CallerContext, item_id: UUID, evidence: str
    ) -> ActionPlanItem:
        with self._unit(ctx, "complete_action_plan_item", _WRITE):
            return self._action_plans.complete(ctx, item_id, evidence)

    def cancel_action_plan_item(self, ctx: CallerContext, item_id: UUID) -> ActionPlanItem:
        with self._unit(ctx, "cancel_action_plan_item", _WRITE):
            return self._action_plans.cancel(ctx, item_id)

    def list_action_plan_items(self, ctx: CallerContext, nc_id: UUID) -> list[ActionPlanItem]:
        with self._unit(ctx, "list_action_plan_items", _READ, nc_id=nc_id):
            return self._action_plans.list_items(ctx, nc_id)

    # =========================================================================
    # Workflow
    # =========================================================================

    def advance_stage(
        self, ctx: CallerContext, nc_id: UUID, expected_current_stage: int
    ) -> NonConformity:
        """
        Move the record one stage forward.

        ``expected_current_stage`` is the stage the caller last saw; if the
        record moved in the meantime the call fails with StaleStageError
        and nothing is written.
        """
        with self._unit(ctx, "advance_stage", _WRITE, nc_id=nc_id):
            return self._workflow.advance(ctx, nc_id, expected_current_stage)

    def evaluate_effectiveness(
        self, ctx: CallerContext, nc_id: UUID, payload: EffectivenessInput
    ) -> EvaluationOutcome:
        """
        Record the stage 6 outcome.

        Effective closes the record.  Ineffective opens a revision, returned
        as ``outcome.revision``.  A postponement reschedules the
        effectiveness task and leaves the record at stage 6.
        """
        with self._unit(ctx, "evaluate_effectiveness", _WRITE, nc_id=nc_id):
            return self._revisions.evaluate(ctx, nc_id, payload)

    def get_effectiveness_evaluation(
        self, ctx: CallerContext, nc_id: UUID
    ) -> EffectivenessEvaluation | None:
        with self._unit(ctx, "get_effectiveness_evaluation", _READ, nc_id=nc_id):
            return self._revisions.get_evaluation(ctx, nc_id)

    # =========================================================================
    # Tasks
    # =========================================================================

    def complete_task(self, ctx: CallerContext, task_id: UUID) -> Task:
        with self._unit(ctx, "complete_task", _WRITE, task_id=task_id):
            return self._tasks.complete_task(ctx, task_id)

    def start_task(self, ctx: CallerContext, task_id: UUID) -> Task:
        with self._unit(ctx, "start_task", _WRITE, task_id=task_id):
            return self._tasks.start_task(ctx, task_id)

    def cancel_task(self, ctx: CallerContext, task_id: UUID) -> Task:
        with self._unit(ctx, "cancel_task", _WRITE, task_id=task_id):
            return self._tasks.cancel_task(ctx, task_id)

    def reassign_task(self, ctx: CallerContext, task_id: UUID, responsible_user_id: UUID) -> Task:
        with self._unit(ctx, "reassign_task", _WRITE, task_id=task_id):
            return self._tasks.reassign_task(ctx, task_id, responsible_user_id)

    def reschedule_task(self, ctx: CallerContext, task_id: UUID, due_date: date) -> Task:
        with self._unit(ctx, "reschedule_task", _WRITE, task_id=task_id):
            return self._tasks.reschedule_task(ctx, task_id, due_date)

    def list_tasks(self, ctx: CallerContext, filters: TaskFilter | None = None) -> list[Task]:
        with self._unit(ctx, "list_tasks", _READ):
            return self._task_selector.list_tasks(ctx, filters)

    def list_my_tasks(self, ctx: CallerContext, open_only: bool = True) -> list[Task]:
        """Tasks assigned to the caller."""
        filters = TaskFilter(responsible_user_id=ctx.actor_id, open_only=open_only)
        with self._unit(ctx, "list_my_tasks", _READ):
            return self._task_selector.list_tasks(ctx, filters)

    # =========================================================================
    # Reports
    # =========================================================================

    def get_sla_report(self, ctx: CallerContext) -> SlaReport:
        with self._unit(ctx, "get_sla_report", _READ):
            return self._dashboard.get_sla_report(ctx)

    def get_dashboard_stats(self, ctx: CallerContext) -> DashboardStats:
        with self._unit(ctx, "get_dashboard_stats", _READ):
            return self._dashboard.get_dashboard_stats(ctx)

    # =========================================================================
    # Transaction boundary
    # =========================================================================

    @contextmanager
    def _unit(
        self,
        ctx: CallerContext,
        operation: str,
        access: str,
        nc_id: UUID | None = None,
        task_id: UUID | None = None,
    ) -> Iterator[None]:
        """
        One operation: role check, log context, commit or rollback.

        Reads end with a rollback so no transaction outlives the call.
        """
        with LogContext.bind_caller(ctx, operation, nc_id=nc_id, task_id=task_id):
            self._authorize(ctx, operation, access)
            try:
                yield
                if access == _READ:
                    self._session.rollback()
                else:
                    self._session.commit()
            except NCKernelError as exc:
                self._session.rollback()
                logger.warning(
                    "operation_rejected",
                    extra={"error_code": exc.code, "error_kind": exc.kind},
                )
                raise
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.error(
                    "operation_dependency_failed",
                    extra={"cause_type": type(exc).__name__},
                )
                raise DependencyError(operation, type(exc).__name__) from exc
            except Exception:
                self._session.rollback()
                logger.exception("operation_failed")
                raise

    @staticmethod
    def _authorize(ctx: CallerContext, operation: str, access: str) -> None:
        if access == _WRITE and not ctx.can_write:
            logger.warning("operation_forbidden", extra={"required_access": access})
            raise AuthorizationError(str(ctx.actor_id), operation, "caller has read-only access")
        if access == _ADMIN and not ctx.is_admin:
            logger.warning("operation_forbidden", extra={"required_access": access})
            raise AuthorizationError(str(ctx.actor_id), operation, "administrator role required")
