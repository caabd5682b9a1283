"""
Module: nc_kernel.models.task
Responsibility: ORM persistence for workflow tasks.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - At most one open task per (non_conformity_id, task_type): a partial
      unique index over open statuses backs the scheduler's own check.
    - priority and status are stored as their display values.

Audit relevance:
    Completed tasks are kept with completed_at and completed_by_id; they
    form the per-stage accountability trail of a non-conformity.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from nc_kernel.db.base import OrganizationScopedBase
from nc_kernel.domain.dtos import Task
from nc_kernel.domain.values import (
    OPEN_TASK_STATUSES,
    TaskPriority,
    TaskStatus,
    TaskType,
)

_OPEN_STATUS_SQL = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in sorted(OPEN_TASK_STATUSES, key=lambda s: s.value))
)


class TaskModel(OrganizationScopedBase):
    """
    A unit of work derived from a stage.

    Guarantees:
        - ``due_date`` is never before the creation day.
        - Terminal rows (Concluída, Cancelada) are never reopened.
    """

    __tablename__ = "nc_tasks"

    __table_args__ = (
        Index("idx_nc_task_org_status_due", "organization_id", "status", "due_date"),
        Index("idx_nc_task_responsible", "organization_id", "responsible_user_id"),
        Index(
            "uq_nc_task_open_per_type",
            "non_conformity_id",
            "task_type",
            unique=True,
            sqlite_where=text(_OPEN_STATUS_SQL),
            postgresql_where=text(_OPEN_STATUS_SQL),
        ),
    )

    non_conformity_id: Mapped[UUID] = mapped_column(
        ForeignKey("non_conformities.id"), nullable=False
    )
    task_type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    responsible_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    due_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.PENDING.value
    )
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskPriority.NORMAL.value
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def to_dto(self) -> Task:
        return Task(
            id=self.id,
            organization_id=self.organization_id,
            non_conformity_id=self.non_conformity_id,
            task_type=TaskType(self.task_type),
            title=self.title,
            description=self.description,
            responsible_user_id=self.responsible_user_id,
            due_date=self.due_date,
            status=TaskStatus(self.status),
            priority=TaskPriority(self.priority),
            completed_at=self.completed_at,
            completed_by_id=self.completed_by_id,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<TaskModel {self.task_type} nc={self.non_conformity_id} [{self.status}]>"
