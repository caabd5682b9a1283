"""
Module: nc_kernel.models.non_conformity
Responsibility: ORM persistence for the non-conformity aggregate root.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - (organization_id, nc_number) is unique.
    - current_stage is between 1 and 6 (CHECK constraint).
    - revision_number is non-negative (CHECK constraint).
    - status is one of the NCStatus values (CHECK constraint).
    - Stage completion columns are written only by the stage controller
      and the revision manager, inside the same conditional UPDATE that
      moves current_stage.

Failure modes:
    - IntegrityError on a duplicate nc_number within an organization.
    - IntegrityError on a stage outside 1..6.

Audit relevance:
    One row per non-conformity, per revision.  The revision chain is
    reconstructed through parent_non_conformity_id.  Rows are never hard
    deleted except by an explicit administrative delete.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nc_kernel.db.base import OrganizationScopedBase
from nc_kernel.domain.dtos import NonConformity
from nc_kernel.domain.values import NCStatus, Severity, Stage


class NonConformityModel(OrganizationScopedBase):
    """
    A registered non-conformity (or one of its revisions).

    Guarantees:
        - ``nc_number`` is unique per organization and never reused.
        - ``stage_k_completed_at`` is non-null exactly when stage k has
          been completed.
    """

    __tablename__ = "non_conformities"

    __table_args__ = (
        UniqueConstraint("organization_id", "nc_number", name="uq_nc_org_number"),
        CheckConstraint("current_stage BETWEEN 1 AND 6", name="chk_nc_current_stage"),
        CheckConstraint("revision_number >= 0", name="chk_nc_revision_number"),
        CheckConstraint("status IN ('Aberta', 'Fechada')", name="chk_nc_status"),
        Index("idx_nc_org_status", "organization_id", "status"),
        Index("idx_nc_org_stage", "organization_id", "current_stage"),
        Index("idx_nc_parent", "parent_non_conformity_id"),
    )

    nc_number: Mapped[str] = mapped_column(String(30), nullable=False)

    # Classification
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    detected_date: Mapped[date] = mapped_column(Date, nullable=False)
    damage_level: Mapped[str | None] = mapped_column(String(50), nullable=True)
    impact_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    sector: Mapped[str | None] = mapped_column(String(100), nullable=True)
    responsible_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Workflow state
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=NCStatus.OPEN.value)
    current_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    stage_1_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stage_2_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stage_3_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stage_4_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stage_5_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stage_6_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Revision lineage
    revision_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_non_conformity_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("non_conformities.id"), nullable=True
    )

    # Free-form analysis carried through the stages
    root_cause_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrective_actions: Mapped[str | None] = mapped_column(Text, nullable=True)
    preventive_actions: Mapped[str | None] = mapped_column(Text, nullable=True)
    effectiveness_evaluation: Mapped[str | None] = mapped_column(Text, nullable=True)
    effectiveness_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_effective: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Owned records
    immediate_action: Mapped[Optional["ImmediateActionModel"]] = relationship(
        "ImmediateActionModel",
        uselist=False,
        cascade="all, delete-orphan",
    )
    cause_analysis: Mapped[Optional["CauseAnalysisModel"]] = relationship(
        "CauseAnalysisModel",
        uselist=False,
        cascade="all, delete-orphan",
    )
    action_plan_items: Mapped[list["ActionPlanItemModel"]] = relationship(
        "ActionPlanItemModel",
        cascade="all, delete-orphan",
        order_by="ActionPlanItemModel.order_index",
    )
    effectiveness_evaluations: Mapped[list["EffectivenessEvaluationModel"]] = relationship(
        "EffectivenessEvaluationModel",
        cascade="all, delete-orphan",
        foreign_keys="EffectivenessEvaluationModel.non_conformity_id",
    )
    tasks: Mapped[list["TaskModel"]] = relationship(
        "TaskModel",
        cascade="all, delete-orphan",
    )

    def stage_completed_at(self, stage: int) -> datetime | None:
        return getattr(self, Stage(stage).completed_at_column)

    @property
    def is_superseded(self) -> bool:
        return self.status == NCStatus.OPEN.value and self.is_effective is False

    def to_dto(self) -> NonConformity:
        return NonConformity(
            id=self.id,
            organization_id=self.organization_id,
            nc_number=self.nc_number,
            title=self.title,
            description=self.description or "",
            category=self.category,
            severity=Severity(self.severity),
            source=self.source or "",
            detected_date=self.detected_date,
            status=NCStatus(self.status),
            current_stage=self.current_stage,
            stage_completed_at=tuple(self.stage_completed_at(s) for s in Stage),
            revision_number=self.revision_number,
            parent_non_conformity_id=self.parent_non_conformity_id,
            damage_level=self.damage_level,
            impact_analysis=self.impact_analysis,
            sector=self.sector,
            responsible_user_id=self.responsible_user_id,
            due_date=self.due_date,
            root_cause_analysis=self.root_cause_analysis,
            corrective_actions=self.corrective_actions,
            preventive_actions=self.preventive_actions,
            effectiveness_evaluation=self.effectiveness_evaluation,
            effectiveness_date=self.effectiveness_date,
            is_effective=self.is_effective,
            completion_date=self.completion_date,
            created_at=self.created_at,
            created_by_id=self.created_by_id,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<NonConformityModel {self.nc_number} stage={self.current_stage} [{self.status}]>"
