"""
Stage record stores -- Immediate action, cause analysis and action plan.

Responsibility:
    Accepts the payload of stages 2 to 5, validates it and stores it
    against its non-conformity.  Also builds the ``StageSnapshot`` the
    stage controller checks exit requirements against.

Architecture position:
    Kernel > Services -- imperative shell.  One small store per record
    kind, sharing the edit-window check in ``_StageRecordStore``.  The
    effectiveness evaluation is written only by the RevisionManager.

Invariants enforced:
    - Edit window: the record of stage s may be written while the
      non-conformity is at stage s-1 (preparing) or s, and never after
      stage s is completed.  Action plan items are defined during stages
      3-4 and executed during stages 4-5.
    - Closed and superseded records take no writes.
    - Every write locks the non-conformity row first, the same lock
      ``StageWorkflowController.advance`` takes, so an item cancelled or
      completed concurrently is either seen by the exit guard or sees the
      new stage.
    - One immediate action and one cause analysis per non-conformity;
      submitting again replaces the content in place.

Failure modes:
    - ValidationError from the payload validators in domain/stages.py.
    - StageRecordLockedError outside the edit window.
    - NonConformityClosedError for closed/superseded records.
    - AlreadyCompletedError when completing a completed/cancelled item.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nc_kernel.domain.dtos import (
    ActionPlanItem,
    ActionPlanItemInput,
    CallerContext,
    CauseAnalysis,
    CauseAnalysisInput,
    ImmediateAction,
    ImmediateActionInput,
)
from nc_kernel.domain.stages import (
    StageSnapshot,
    validate_action_plan_item,
    validate_cause_analysis,
    validate_immediate_action,
)
from nc_kernel.domain.values import ActionPlanStatus, NCStatus, Stage
from nc_kernel.exceptions import (
    AlreadyCompletedError,
    InvariantViolation,
    NonConformityClosedError,
    StageRecordLockedError,
    ValidationError,
)
from nc_kernel.logging_config import get_logger
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.models.stage_records import (
    ActionPlanItemModel,
    CauseAnalysisModel,
    EffectivenessEvaluationModel,
    ImmediateActionModel,
)
from nc_kernel.services.base import BaseService

logger = get_logger("services.stage_records")


class _StageRecordStore(BaseService[NonConformityModel]):
    """Shared ownership and edit-window checks."""

    def _load_nc(self, ctx: CallerContext, nc_id: UUID, operation: str) -> NonConformityModel:
        return self._load_owned(NonConformityModel, nc_id, ctx, "non_conformity", operation)

    def _lock_nc(self, ctx: CallerContext, nc_id: UUID, operation: str) -> NonConformityModel:
        """Load the non-conformity with its row locked against a concurrent stage advance."""
        return self._load_owned_for_update(
            NonConformityModel, nc_id, ctx, "non_conformity", operation
        )

    def _ensure_window(self, nc: NonConformityModel, first: Stage, last: Stage) -> None:
        """Allow writes only while ``first <= current_stage <= last``."""
        if nc.status == NCStatus.CLOSED.value:
            raise NonConformityClosedError(str(nc.id), "closed")
        if nc.is_superseded:
            raise NonConformityClosedError(str(nc.id), "superseded by a revision")
        if not first <= nc.current_stage <= last:
            raise StageRecordLockedError(str(nc.id), int(last), nc.current_stage)


class ImmediateActionStore(_StageRecordStore):
    """Stage 2 record.  Editable at stages 1-2."""

    def get(self, ctx: CallerContext, nc_id: UUID) -> ImmediateAction | None:
        self._load_nc(ctx, nc_id, "read immediate action")
        row = self._row(nc_id)
        return row.to_dto() if row else None

    def submit(self, ctx: CallerContext, nc_id: UUID, payload: ImmediateActionInput) -> ImmediateAction:
        status = validate_immediate_action(payload)
        nc = self._lock_nc(ctx, nc_id, "submit immediate action")
        self._ensure_window(nc, Stage.REGISTRATION, Stage.IMMEDIATE_ACTION)

        row = self._row(nc_id)
        if row is None:
            row = ImmediateActionModel(
                organization_id=nc.organization_id,
                non_conformity_id=nc.id,
                created_by_id=ctx.actor_id,
            )
            self.session.add(row)
        else:
            row.touch(ctx.actor_id, self._clock.now_utc())
        row.description = payload.description.strip()
        row.responsible_user_id = payload.responsible_user_id
        row.due_date = payload.due_date
        row.status = status.value
        row.evidence = payload.evidence
        row.completion_date = payload.completion_date
        self.session.flush()

        logger.info(
            "immediate_action_recorded",
            extra={"nc_id": str(nc_id), "status": status.value},
        )
        return row.to_dto()

    def _row(self, nc_id: UUID) -> ImmediateActionModel | None:
        return self.session.execute(
            select(ImmediateActionModel).where(ImmediateActionModel.non_conformity_id == nc_id)
        ).scalar_one_or_none()


class CauseAnalysisStore(_StageRecordStore):
    """Stage 3 record.  Editable at stages 2-3."""

    def get(self, ctx: CallerContext, nc_id: UUID) -> CauseAnalysis | None:
        self._load_nc(ctx, nc_id, "read cause analysis")
        row = self._row(nc_id)
        return row.to_dto() if row else None

    def submit(self, ctx: CallerContext, nc_id: UUID, payload: CauseAnalysisInput) -> CauseAnalysis:
        method = validate_cause_analysis(payload)
        nc = self._lock_nc(ctx, nc_id, "submit cause analysis")
        self._ensure_window(nc, Stage.IMMEDIATE_ACTION, Stage.CAUSE_ANALYSIS)

        row = self._row(nc_id)
        if row is None:
            row = CauseAnalysisModel(
                organization_id=nc.organization_id,
                non_conformity_id=nc.id,
                created_by_id=ctx.actor_id,
            )
            self.session.add(row)
        else:
            row.touch(ctx.actor_id, self._clock.now_utc())
        row.analysis_method = method.value
        row.root_cause = payload.root_cause.strip()
        row.set_structures(payload.main_causes, payload.ishikawa_data, payload.five_whys)
        row.responsible_user_id = payload.responsible_user_id
        row.due_date = payload.due_date
        row.completed_at = self._clock.now_utc()
        self.session.flush()

        logger.info(
            "cause_analysis_recorded",
            extra={"nc_id": str(nc_id), "analysis_method": method.value},
        )
        return row.to_dto()

    def _row(self, nc_id: UUID) -> CauseAnalysisModel | None:
        return self.session.execute(
            select(CauseAnalysisModel).where(CauseAnalysisModel.non_conformity_id == nc_id)
        ).scalar_one_or_none()


class ActionPlanStore(_StageRecordStore):
    """
    Stage 4/5 records.

    Items are appended with the next ``order_index`` during stages 3-4,
    and completed with evidence during stages 4-5.  Cancelling an item
    is allowed in either window.
    """

    def list_items(self, ctx: CallerContext, nc_id: UUID) -> list[ActionPlanItem]:
        self._load_nc(ctx, nc_id, "list action plan")
        return [r.to_dto() for r in self._rows(nc_id)]

    def add(self, ctx: CallerContext, nc_id: UUID, payload: ActionPlanItemInput) -> ActionPlanItem:
        validate_action_plan_item(payload)
        nc = self._lock_nc(ctx, nc_id, "add action plan item")
        self._ensure_window(nc, Stage.CAUSE_ANALYSIS, Stage.PLANNING)

        next_index = self.session.execute(
            select(func.coalesce(func.max(ActionPlanItemModel.order_index), 0)).where(
                ActionPlanItemModel.non_conformity_id == nc_id
            )
        ).scalar_one() + 1

        row = ActionPlanItemModel(
            organization_id=nc.organization_id,
            non_conformity_id=nc.id,
            order_index=next_index,
            what_action=payload.what_action.strip(),
            why_reason=payload.why_reason,
            how_method=payload.how_method,
            where_location=payload.where_location,
            who_responsible_id=payload.who_responsible_id,
            when_deadline=payload.when_deadline,
            how_much_cost=payload.how_much_cost,
            status=ActionPlanStatus.PLANNED.value,
            created_by_id=ctx.actor_id,
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "action_plan_item_added",
            extra={"nc_id": str(nc_id), "order_index": next_index},
        )
        return row.to_dto()

    def complete(self, ctx: CallerContext, item_id: UUID, evidence: str) -> ActionPlanItem:
        if not (evidence or "").strip():
            raise ValidationError("action_plan_item", "evidence", "is required to complete an item")
        row, nc = self._load_item(ctx, item_id, "complete action plan item")
        self._ensure_window(nc, Stage.PLANNING, Stage.IMPLEMENTATION)
        if row.status in (ActionPlanStatus.COMPLETED.value, ActionPlanStatus.CANCELLED.value):
            raise AlreadyCompletedError("action_plan_item", str(item_id), row.status)

        row.status = ActionPlanStatus.COMPLETED.value
        row.evidence = evidence.strip()
        row.completed_at = self._clock.now_utc()
        row.touch(ctx.actor_id, self._clock.now_utc())
        self.session.flush()

        logger.info(
            "action_plan_item_completed",
            extra={"nc_id": str(nc.id), "order_index": row.order_index},
        )
        return row.to_dto()

    def cancel(self, ctx: CallerContext, item_id: UUID) -> ActionPlanItem:
        row, nc = self._load_item(ctx, item_id, "cancel action plan item")
        self._ensure_window(nc, Stage.CAUSE_ANALYSIS, Stage.IMPLEMENTATION)
        if row.status in (ActionPlanStatus.COMPLETED.value, ActionPlanStatus.CANCELLED.value):
            raise AlreadyCompletedError("action_plan_item", str(item_id), row.status)
        if nc.current_stage == Stage.IMPLEMENTATION:
            live = [r for r in self._rows(nc.id) if r.status != ActionPlanStatus.CANCELLED.value]
            if live == [row]:
                raise InvariantViolation(
                    "non_conformity",
                    str(nc.id),
                    "the last active action plan item cannot be cancelled during implementation",
                )

        row.status = ActionPlanStatus.CANCELLED.value
        row.touch(ctx.actor_id, self._clock.now_utc())
        self.session.flush()

        logger.info(
            "action_plan_item_cancelled",
            extra={"nc_id": str(nc.id), "order_index": row.order_index},
        )
        return row.to_dto()

    def _load_item(
        self, ctx: CallerContext, item_id: UUID, operation: str
    ) -> tuple[ActionPlanItemModel, NonConformityModel]:
        row = self._load_owned(ActionPlanItemModel, item_id, ctx, "action_plan_item", operation)
        nc = self._lock_nc(ctx, row.non_conformity_id, operation)
        # The item may have changed while we waited for the lock.
        self.session.refresh(row)
        return row, nc

    def _rows(self, nc_id: UUID) -> list[ActionPlanItemModel]:
        return list(
            self.session.execute(
                select(ActionPlanItemModel)
                .where(ActionPlanItemModel.non_conformity_id == nc_id)
                .order_by(ActionPlanItemModel.order_index)
            ).scalars()
        )


def load_stage_snapshot(session: Session, nc: NonConformityModel) -> StageSnapshot:
    """Read the non-conformity and all of its stage records as DTOs."""
    ia = session.execute(
        select(ImmediateActionModel).where(ImmediateActionModel.non_conformity_id == nc.id)
    ).scalar_one_or_none()
    ca = session.execute(
        select(CauseAnalysisModel).where(CauseAnalysisModel.non_conformity_id == nc.id)
    ).scalar_one_or_none()
    plan = session.execute(
        select(ActionPlanItemModel)
        .where(ActionPlanItemModel.non_conformity_id == nc.id)
        .order_by(ActionPlanItemModel.order_index)
    ).scalars()
    ev = session.execute(
        select(EffectivenessEvaluationModel).where(
            EffectivenessEvaluationModel.non_conformity_id == nc.id
        )
    ).scalar_one_or_none()
    return StageSnapshot(
        non_conformity=nc.to_dto(),
        immediate_action=ia.to_dto() if ia else None,
        cause_analysis=ca.to_dto() if ca else None,
        action_plan=tuple(r.to_dto() for r in plan),
        effectiveness=ev.to_dto() if ev else None,
    )
