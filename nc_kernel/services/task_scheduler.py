"""
TaskScheduler -- Derived tasks for non-conformity stages.

Responsibility:
    Creates the task for each stage a non-conformity enters, completes the
    outgoing stage's task when the stage is left, and serves the direct
    task operations (complete, start, cancel, reassign, reschedule).

Architecture position:
    Kernel > Services -- imperative shell.  Called by the stage controller,
    the registry and the revision manager inside their transactions, and
    by the module facade for direct task operations.

Invariants enforced:
    - Single open task: at most one open task per (non-conformity, task
      type).  Checked before insert and backed by a partial unique index.
    - Due dates come from the WorkflowPolicy and are never before today.
      Editing the detection date re-derives them for open tasks.
    - Priority follows severity through the policy mapping.
    - Terminal tasks are never reopened: every status change is a
      conditional UPDATE over open statuses.

Failure modes:
    - InvariantViolation if a task of the same type is already open.
    - AlreadyCompletedError when a status change targets a terminal task.
    - NotFoundError / AuthorizationError from the ownership check.

Audit relevance:
    completed_by_id and completed_at record who closed each stage's work.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from nc_kernel.domain.clock import Clock
from nc_kernel.domain.dtos import CallerContext, Task
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.values import (
    OPEN_TASK_STATUSES,
    Severity,
    Stage,
    TaskStatus,
    TaskType,
)
from nc_kernel.exceptions import AlreadyCompletedError, InvariantViolation, ValidationError
from nc_kernel.logging_config import get_logger
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.models.task import TaskModel
from nc_kernel.services.base import BaseService

logger = get_logger("services.task_scheduler")

_OPEN_VALUES = tuple(sorted(s.value for s in OPEN_TASK_STATUSES))


class TaskScheduler(BaseService[TaskModel]):
    """
    Owns the task rows of every non-conformity.

    Contract:
        Stage entry produces exactly one task of the stage's type.  Stage
        exit completes it.  Nothing else creates workflow tasks.

    Non-goals:
        - Does not persist the derived OVERDUE status; timeliness is
          computed at read time by the SLA analyzer.
    """

    def __init__(
        self,
        session: Session,
        policy: WorkflowPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._policy = policy or WorkflowPolicy.with_defaults()

    # ------------------------------------------------------------------
    # Workflow-driven operations
    # ------------------------------------------------------------------

    def open_task(self, nc_id: UUID, task_type: TaskType) -> TaskModel | None:
        return self.session.execute(
            select(TaskModel).where(
                TaskModel.non_conformity_id == nc_id,
                TaskModel.task_type == task_type.value,
                TaskModel.status.in_(_OPEN_VALUES),
            )
        ).scalar_one_or_none()

    def create_task_for_stage(
        self,
        nc: NonConformityModel,
        stage: Stage,
        actor_id: UUID,
        responsible_user_id: UUID | None = None,
    ) -> TaskModel:
        """Create the task for ``stage`` with policy-derived due date and priority."""
        task_type = stage.task_type
        if self.open_task(nc.id, task_type) is not None:
            raise InvariantViolation(
                "non_conformity",
                str(nc.id),
                f"an open {task_type.value} task already exists",
            )

        now = self._clock.now_utc()
        due = self._policy.due_date_for(stage, nc.detected_date, now.date())
        task = TaskModel(
            organization_id=nc.organization_id,
            non_conformity_id=nc.id,
            task_type=task_type.value,
            title=f"{stage.title} - {nc.nc_number}",
            description=nc.title,
            responsible_user_id=responsible_user_id or nc.responsible_user_id,
            due_date=due,
            status=TaskStatus.PENDING.value,
            priority=self._policy.priority_for(Severity(nc.severity)).value,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(task)
        self.session.flush()

        logger.info(
            "task_created",
            extra={
                "nc_id": str(nc.id),
                "task_id": str(task.id),
                "task_type": task_type.value,
                "due_date": due.isoformat(),
                "priority": task.priority,
            },
        )
        return task

    def complete_open_task(self, nc_id: UUID, task_type: TaskType, actor_id: UUID) -> TaskModel | None:
        """
        Complete the open task of ``task_type``, if any.

        Returns None when the task was already completed directly.
        """
        task = self.open_task(nc_id, task_type)
        if task is None:
            return None
        if not self._mark(task, TaskStatus.COMPLETED, actor_id):
            return None
        return task

    def reschedule_open_task(
        self,
        nc_id: UUID,
        task_type: TaskType,
        due_date: date,
        actor_id: UUID,
        responsible_user_id: UUID | None = None,
    ) -> TaskModel | None:
        task = self.open_task(nc_id, task_type)
        if task is None:
            return None
        task.due_date = due_date
        if responsible_user_id is not None:
            task.responsible_user_id = responsible_user_id
        task.touch(actor_id, self._clock.now_utc())
        self.session.flush()
        logger.info(
            "task_rescheduled",
            extra={"task_id": str(task.id), "due_date": due_date.isoformat()},
        )
        return task

    def reprioritize_open_tasks(self, nc_id: UUID, severity: Severity, actor_id: UUID) -> int:
        """Re-derive the priority of open tasks after a severity change."""
        result = self.session.execute(
            update(TaskModel)
            .where(
                TaskModel.non_conformity_id == nc_id,
                TaskModel.status.in_(_OPEN_VALUES),
            )
            .values(
                priority=self._policy.priority_for(severity).value,
                updated_by_id=actor_id,
                updated_at=self._clock.now_utc(),
            )
        )
        return result.rowcount

    def redate_open_tasks(
        self, nc: NonConformityModel, previous_detected_date: date, actor_id: UUID
    ) -> int:
        """
        Re-derive open task due dates after the detection date changes.

        A task whose due date no longer matches what the previous detection
        date produced was rescheduled or postponed by hand and keeps it.
        """
        now = self._clock.now_utc()
        redated = 0
        tasks = self.session.execute(
            select(TaskModel).where(
                TaskModel.non_conformity_id == nc.id,
                TaskModel.status.in_(_OPEN_VALUES),
            )
        ).scalars()
        for task in tasks:
            stage = TaskType(task.task_type).stage
            derived = self._policy.due_date_for(stage, previous_detected_date, task.created_at.date())
            if task.due_date != derived:
                continue
            task.due_date = self._policy.due_date_for(stage, nc.detected_date, now.date())
            task.touch(actor_id, now)
            redated += 1
            logger.info(
                "task_rescheduled",
                extra={"task_id": str(task.id), "due_date": task.due_date.isoformat()},
            )
        self.session.flush()
        return redated

    # ------------------------------------------------------------------
    # Direct task operations
    # ------------------------------------------------------------------

    def complete_task(self, ctx: CallerContext, task_id: UUID) -> Task:
        task = self._load_owned(TaskModel, task_id, ctx, "task", "complete task")
        if not self._mark(task, TaskStatus.COMPLETED, ctx.actor_id):
            raise AlreadyCompletedError("task", str(task_id), task.status)
        return task.to_dto()

    def cancel_task(self, ctx: CallerContext, task_id: UUID) -> Task:
        task = self._load_owned(TaskModel, task_id, ctx, "task", "cancel task")
        if not self._mark(task, TaskStatus.CANCELLED, ctx.actor_id):
            raise AlreadyCompletedError("task", str(task_id), task.status)
        return task.to_dto()

    def start_task(self, ctx: CallerContext, task_id: UUID) -> Task:
        """Move a pending task to in-progress.  Starting a started task is a no-op."""
        task = self._load_owned(TaskModel, task_id, ctx, "task", "start task")
        if task.status == TaskStatus.IN_PROGRESS.value:
            return task.to_dto()
        if not self._mark(task, TaskStatus.IN_PROGRESS, ctx.actor_id):
            raise AlreadyCompletedError("task", str(task_id), task.status)
        return task.to_dto()

    def reassign_task(self, ctx: CallerContext, task_id: UUID, responsible_user_id: UUID) -> Task:
        task = self._editable(ctx, task_id, "reassign task")
        task.responsible_user_id = responsible_user_id
        task.touch(ctx.actor_id, self._clock.now_utc())
        self.session.flush()
        logger.info(
            "task_reassigned",
            extra={"task_id": str(task_id), "responsible_user_id": str(responsible_user_id)},
        )
        return task.to_dto()

    def reschedule_task(self, ctx: CallerContext, task_id: UUID, due_date: date) -> Task:
        task = self._editable(ctx, task_id, "reschedule task")
        if due_date < self._clock.today():
            raise ValidationError("task", "due_date", "is in the past")
        task.due_date = due_date
        task.touch(ctx.actor_id, self._clock.now_utc())
        self.session.flush()
        logger.info(
            "task_rescheduled",
            extra={"task_id": str(task_id), "due_date": due_date.isoformat()},
        )
        return task.to_dto()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _editable(self, ctx: CallerContext, task_id: UUID, operation: str) -> TaskModel:
        task = self._load_owned(TaskModel, task_id, ctx, "task", operation)
        if TaskStatus(task.status).is_terminal:
            raise AlreadyCompletedError("task", str(task_id), task.status)
        return task

    def _mark(self, task: TaskModel, status: TaskStatus, actor_id: UUID) -> bool:
        """
        Conditionally move ``task`` out of an open status.

        Returns False, leaving the row untouched, when the task is no
        longer open (another caller got there first).
        """
        now = self._clock.now_utc()
        values = {"status": status.value, "updated_by_id": actor_id, "updated_at": now}
        if status == TaskStatus.COMPLETED:
            values.update(completed_at=now, completed_by_id=actor_id)

        result = self.session.execute(
            update(TaskModel)
            .where(TaskModel.id == task.id, TaskModel.status.in_(_OPEN_VALUES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(task)
        if result.rowcount == 0:
            return False

        logger.info(
            "task_status_changed",
            extra={
                "task_id": str(task.id),
                "nc_id": str(task.non_conformity_id),
                "task_type": task.task_type,
                "status": status.value,
            },
        )
        return True
