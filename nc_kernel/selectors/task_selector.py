"""
Module: nc_kernel.selectors.task_selector
Responsibility: Filtered listing of stage tasks within one organization.
"""

from nc_kernel.domain.dtos import CallerContext, Task, TaskFilter
from nc_kernel.domain.values import OPEN_TASK_STATUSES
from nc_kernel.models.task import TaskModel
from nc_kernel.selectors.base import BaseSelector


class TaskSelector(BaseSelector[TaskModel]):
    """Read access to task rows, ordered by due date."""

    model = TaskModel
    entity_type = "task"

    def list_tasks(self, ctx: CallerContext, filters: TaskFilter | None = None) -> list[Task]:
        filters = filters or TaskFilter()
        stmt = self._scoped(ctx)
        if filters.responsible_user_id is not None:
            stmt = stmt.where(TaskModel.responsible_user_id == filters.responsible_user_id)
        if filters.task_type is not None:
            stmt = stmt.where(TaskModel.task_type == filters.task_type.value)
        if filters.status is not None:
            stmt = stmt.where(TaskModel.status == filters.status.value)
        if filters.non_conformity_id is not None:
            stmt = stmt.where(TaskModel.non_conformity_id == filters.non_conformity_id)
        if filters.open_only:
            stmt = stmt.where(TaskModel.status.in_([s.value for s in OPEN_TASK_STATUSES]))
        if filters.due_before is not None:
            stmt = stmt.where(TaskModel.due_date < filters.due_before)
        stmt = stmt.order_by(TaskModel.due_date, TaskModel.created_at)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]
