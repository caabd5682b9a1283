"""
Module: nc_kernel.selectors.dashboard_selector
Responsibility: Loads one organization's records and hands them to the pure
    SLA analyzer and dashboard aggregation in nc_kernel.domain.

Invariants enforced:
    - Reports are computed at read time from tasks and non-conformities;
      nothing is stored.
    - "Today" comes from the injected Clock so reports are reproducible.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from nc_kernel.domain.clock import Clock, SystemClock
from nc_kernel.domain.dashboard import DashboardStats, build_dashboard_stats
from nc_kernel.domain.dtos import CallerContext, Task
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.sla import SlaReport, analyze_tasks
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.models.task import TaskModel
from nc_kernel.selectors.base import BaseSelector


class DashboardSelector(BaseSelector[NonConformityModel]):
    """SLA report and dashboard statistics for the caller's organization."""

    model = NonConformityModel
    entity_type = "non_conformity"

    def __init__(
        self,
        session: Session,
        policy: WorkflowPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._policy = policy or WorkflowPolicy.with_defaults()
        self._clock = clock or SystemClock()

    def get_sla_report(self, ctx: CallerContext) -> SlaReport:
        return analyze_tasks(
            self._tasks(ctx),
            self._clock.today(),
            due_soon_days=self._policy.due_soon_days,
            most_overdue_limit=self._policy.most_overdue_limit,
        )

    def get_dashboard_stats(self, ctx: CallerContext) -> DashboardStats:
        ncs = [
            row.to_dto()
            for row in self.session.execute(self._scoped(ctx)).scalars()
        ]
        return build_dashboard_stats(ncs, self._tasks(ctx), self._clock.today(), self._policy)

    def _tasks(self, ctx: CallerContext) -> list[Task]:
        return [
            row.to_dto()
            for row in self.session.execute(
                select(TaskModel).where(TaskModel.organization_id == ctx.organization_id)
            ).scalars()
        ]
