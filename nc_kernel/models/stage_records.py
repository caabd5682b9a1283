"""
Module: nc_kernel.models.stage_records
Responsibility: ORM persistence for the records owned by a non-conformity:
    immediate action (stage 2), cause analysis (stage 3), action plan items
    (stages 4 and 5) and the effectiveness evaluation (stage 6).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - At most one immediate action, one cause analysis and one
      effectiveness evaluation per non-conformity (UNIQUE on
      non_conformity_id).
    - Action plan order_index is unique within a non-conformity.
    - Every record carries the organization_id of its parent so that
      tenant filters never need a join.

Audit relevance:
    Stage records are never deleted by the workflow.  Once their stage is
    completed the stores refuse further edits, so the row reflects the
    state in which the stage was left.
"""

import json
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from nc_kernel.db.base import OrganizationScopedBase
from nc_kernel.domain.dtos import (
    ActionPlanItem,
    CauseAnalysis,
    EffectivenessEvaluation,
    ImmediateAction,
)
from nc_kernel.domain.values import (
    ActionPlanStatus,
    AnalysisMethod,
    ImmediateActionStatus,
)


# ---------------------------------------------------------------------------
# ImmediateActionModel (stage 2)
# ---------------------------------------------------------------------------


class ImmediateActionModel(OrganizationScopedBase):
    """Containment action taken right after detection.  One per non-conformity."""

    __tablename__ = "nc_immediate_actions"

    __table_args__ = (
        UniqueConstraint("non_conformity_id", name="uq_nc_immediate_action"),
        Index("idx_nc_immediate_action_org", "organization_id"),
    )

    non_conformity_id: Mapped[UUID] = mapped_column(
        ForeignKey("non_conformities.id"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    responsible_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ImmediateActionStatus.PENDING.value
    )
    evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    completion_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self) -> ImmediateAction:
        return ImmediateAction(
            id=self.id,
            non_conformity_id=self.non_conformity_id,
            description=self.description,
            responsible_user_id=self.responsible_user_id,
            due_date=self.due_date,
            status=ImmediateActionStatus(self.status),
            evidence=self.evidence,
            completion_date=self.completion_date,
        )

    def __repr__(self) -> str:
        return f"<ImmediateActionModel nc={self.non_conformity_id} [{self.status}]>"


# ---------------------------------------------------------------------------
# CauseAnalysisModel (stage 3)
# ---------------------------------------------------------------------------


class CauseAnalysisModel(OrganizationScopedBase):
    """
    Root cause analysis.  One per non-conformity.

    Method-specific structures (main causes, ishikawa categories, five
    whys) are stored as JSON text.
    """

    __tablename__ = "nc_cause_analyses"

    __table_args__ = (
        UniqueConstraint("non_conformity_id", name="uq_nc_cause_analysis"),
        Index("idx_nc_cause_analysis_org", "organization_id"),
    )

    non_conformity_id: Mapped[UUID] = mapped_column(
        ForeignKey("non_conformities.id"), nullable=False
    )
    analysis_method: Mapped[str] = mapped_column(String(20), nullable=False)
    root_cause: Mapped[str] = mapped_column(Text, nullable=False, default="")
    main_causes_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    ishikawa_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    five_whys_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    responsible_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def set_structures(self, main_causes, ishikawa_data, five_whys) -> None:
        self.main_causes_json = json.dumps(list(main_causes))
        self.ishikawa_json = json.dumps(
            {category: list(causes) for category, causes in ishikawa_data.items()},
            sort_keys=True,
        )
        self.five_whys_json = json.dumps(list(five_whys))

    def to_dto(self) -> CauseAnalysis:
        ishikawa = json.loads(self.ishikawa_json) if self.ishikawa_json else {}
        return CauseAnalysis(
            id=self.id,
            non_conformity_id=self.non_conformity_id,
            analysis_method=AnalysisMethod(self.analysis_method),
            root_cause=self.root_cause,
            main_causes=tuple(json.loads(self.main_causes_json)) if self.main_causes_json else (),
            ishikawa_data={k: tuple(v) for k, v in ishikawa.items()},
            five_whys=tuple(json.loads(self.five_whys_json)) if self.five_whys_json else (),
            responsible_user_id=self.responsible_user_id,
            due_date=self.due_date,
            completed_at=self.completed_at,
        )

    def __repr__(self) -> str:
        return f"<CauseAnalysisModel nc={self.non_conformity_id} method={self.analysis_method}>"


# ---------------------------------------------------------------------------
# ActionPlanItemModel (stages 4 and 5)
# ---------------------------------------------------------------------------


class ActionPlanItemModel(OrganizationScopedBase):
    """One 5W2H action.  Defined in stage 4, executed in stage 5."""

    __tablename__ = "nc_action_plan_items"

    __table_args__ = (
        UniqueConstraint("non_conformity_id", "order_index", name="uq_nc_action_plan_order"),
        Index("idx_nc_action_plan_org", "organization_id"),
    )

    non_conformity_id: Mapped[UUID] = mapped_column(
        ForeignKey("non_conformities.id"), nullable=False
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    what_action: Mapped[str] = mapped_column(Text, nullable=False)
    why_reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    how_method: Mapped[str] = mapped_column(Text, nullable=False, default="")
    where_location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    who_responsible_id: Mapped[UUID | None] = mapped_column(nullable=True)
    when_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    how_much_cost: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ActionPlanStatus.PLANNED.value
    )
    evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dto(self) -> ActionPlanItem:
        return ActionPlanItem(
            id=self.id,
            non_conformity_id=self.non_conformity_id,
            order_index=self.order_index,
            what_action=self.what_action,
            why_reason=self.why_reason or "",
            how_method=self.how_method or "",
            where_location=self.where_location or "",
            who_responsible_id=self.who_responsible_id,
            when_deadline=self.when_deadline,
            how_much_cost=self.how_much_cost,
            status=ActionPlanStatus(self.status),
            evidence=self.evidence,
            completed_at=self.completed_at,
        )

    def __repr__(self) -> str:
        return f"<ActionPlanItemModel nc={self.non_conformity_id} #{self.order_index} [{self.status}]>"


# ---------------------------------------------------------------------------
# EffectivenessEvaluationModel (stage 6)
# ---------------------------------------------------------------------------


class EffectivenessEvaluationModel(OrganizationScopedBase):
    """
    Effectiveness check.  One per non-conformity, updated by each
    postponement and by the final verdict.
    """

    __tablename__ = "nc_effectiveness_evaluations"

    __table_args__ = (
        UniqueConstraint("non_conformity_id", name="uq_nc_effectiveness"),
        Index("idx_nc_effectiveness_org", "organization_id"),
    )

    non_conformity_id: Mapped[UUID] = mapped_column(
        ForeignKey("non_conformities.id"), nullable=False
    )
    is_effective: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    requires_risk_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    risk_update_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    requires_sgq_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sgq_change_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    evaluated_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    postponed_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    postponed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    postponed_responsible_id: Mapped[UUID | None] = mapped_column(nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generated_revision_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("non_conformities.id"), nullable=True
    )

    def to_dto(self) -> EffectivenessEvaluation:
        return EffectivenessEvaluation(
            id=self.id,
            non_conformity_id=self.non_conformity_id,
            is_effective=self.is_effective,
            evidence=self.evidence,
            requires_risk_update=bool(self.requires_risk_update),
            risk_update_notes=self.risk_update_notes,
            requires_sgq_change=bool(self.requires_sgq_change),
            sgq_change_notes=self.sgq_change_notes,
            evaluated_by_user_id=self.evaluated_by_user_id,
            evaluated_at=self.evaluated_at,
            postponed_to=self.postponed_to,
            postponed_reason=self.postponed_reason,
            postponed_responsible_id=self.postponed_responsible_id,
            attempt_count=self.attempt_count,
            generated_revision_id=self.generated_revision_id,
        )

    def __repr__(self) -> str:
        return f"<EffectivenessEvaluationModel nc={self.non_conformity_id} effective={self.is_effective}>"
