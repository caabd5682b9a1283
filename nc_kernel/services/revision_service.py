"""
RevisionManager -- Effectiveness evaluation and self-reopening revisions.

Responsibility:
    Records the outcome of stage 6.  A postponement reschedules the
    effectiveness task.  An effective verdict closes the non-conformity.
    An ineffective verdict completes stage 6 on the record (which then
    counts as superseded) and opens a linked revision that re-enters the
    workflow at the policy's revision entry stage.

Architecture position:
    Kernel > Services -- imperative shell.  The only component that ends
    stage 6, that closes a non-conformity, and that creates a
    non-conformity outside NonConformityRegistry.create.

Invariants enforced:
    - Closure: status becomes Closed only in the same conditional UPDATE
      that sets stage_6_completed_at with is_effective = True.
    - Revision lineage: revision_number = parent.revision_number + 1 and
      parent_non_conformity_id = parent.id, written once at creation.
    - Stage timestamps on the revision: every stage before the entry
      stage carries the parent's completion timestamp, so the revision
      satisfies "stage_k_completed_at set iff current_stage > k" from its
      first moment.
    - Double evaluation is rejected: the UPDATE is conditional on
      stage_6_completed_at IS NULL.

Failure modes:
    - ValidationError for an incomplete verdict or postponement.
    - StageRequirementNotMetError when the record is not at stage 6.
    - AlreadyCompletedError when stage 6 was already evaluated.
    - StaleStageError when a concurrent caller moved the record first.

Audit relevance:
    The evaluation row keeps evidence, risk/SGQ follow-ups, who evaluated
    and when, every postponement, and the id of the revision it opened.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from nc_kernel.domain.clock import Clock
from nc_kernel.domain.dtos import (
    CallerContext,
    EffectivenessEvaluation,
    EffectivenessInput,
    EvaluationOutcome,
)
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.stages import validate_effectiveness
from nc_kernel.domain.values import FINAL_STAGE, NCStatus, Stage, TaskType
from nc_kernel.exceptions import (
    AlreadyCompletedError,
    NonConformityClosedError,
    StageRequirementNotMetError,
    StaleStageError,
)
from nc_kernel.logging_config import get_logger
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.models.stage_records import EffectivenessEvaluationModel
from nc_kernel.services.base import BaseService
from nc_kernel.services.sequence_service import SequenceService
from nc_kernel.services.task_scheduler import TaskScheduler

logger = get_logger("services.revision")


class RevisionManager(BaseService[NonConformityModel]):
    """
    Ends stage 6.

    Contract:
        ``evaluate`` returns an EvaluationOutcome.  ``revision`` is set
        only for an ineffective verdict.
    """

    def __init__(
        self,
        session: Session,
        task_scheduler: TaskScheduler,
        sequence_service: SequenceService | None = None,
        policy: WorkflowPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._tasks = task_scheduler
        self._sequences = sequence_service or SequenceService(session)
        self._policy = policy or WorkflowPolicy.with_defaults()

    def get_evaluation(self, ctx: CallerContext, nc_id: UUID) -> EffectivenessEvaluation | None:
        self._load_owned(NonConformityModel, nc_id, ctx, "non_conformity", "read effectiveness")
        row = self._evaluation_row(nc_id)
        return row.to_dto() if row else None

    def evaluate(self, ctx: CallerContext, nc_id: UUID, payload: EffectivenessInput) -> EvaluationOutcome:
        validate_effectiveness(payload, self._clock.today())
        nc = self._load_owned(NonConformityModel, nc_id, ctx, "non_conformity", "evaluate effectiveness")

        if nc.status == NCStatus.CLOSED.value:
            raise NonConformityClosedError(str(nc_id), "closed")
        if nc.stage_6_completed_at is not None:
            raise AlreadyCompletedError("effectiveness_evaluation", str(nc_id), "evaluated")
        if nc.current_stage != FINAL_STAGE:
            raise StageRequirementNotMetError(
                str(nc_id),
                nc.current_stage,
                "at_effectiveness_stage",
                f"effectiveness can only be evaluated at stage {int(FINAL_STAGE)}",
            )

        evaluation = self._evaluation_row(nc_id)
        if evaluation is None:
            evaluation = EffectivenessEvaluationModel(
                organization_id=nc.organization_id,
                non_conformity_id=nc.id,
                attempt_count=0,
                created_by_id=ctx.actor_id,
            )
            self.session.add(evaluation)
        evaluation.attempt_count = (evaluation.attempt_count or 0) + 1
        evaluation.touch(ctx.actor_id, self._clock.now_utc())

        if payload.is_postponement:
            return self._postpone(ctx, nc, evaluation, payload)
        return self._judge(ctx, nc, evaluation, payload)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _postpone(
        self,
        ctx: CallerContext,
        nc: NonConformityModel,
        evaluation: EffectivenessEvaluationModel,
        payload: EffectivenessInput,
    ) -> EvaluationOutcome:
        evaluation.postponed_to = payload.postponed_to
        evaluation.postponed_reason = payload.postponed_reason.strip()
        evaluation.postponed_responsible_id = payload.postponed_responsible_id
        self.session.flush()

        self._tasks.reschedule_open_task(
            nc.id,
            TaskType.EFFECTIVENESS,
            payload.postponed_to,
            ctx.actor_id,
            responsible_user_id=payload.postponed_responsible_id,
        )

        logger.info(
            "effectiveness_postponed",
            extra={
                "nc_id": str(nc.id),
                "postponed_to": payload.postponed_to.isoformat(),
                "attempt": evaluation.attempt_count,
            },
        )
        return EvaluationOutcome(non_conformity=nc.to_dto(), evaluation=evaluation.to_dto())

    def _judge(
        self,
        ctx: CallerContext,
        nc: NonConformityModel,
        evaluation: EffectivenessEvaluationModel,
        payload: EffectivenessInput,
    ) -> EvaluationOutcome:
        now = self._clock.now_utc()
        values = {
            Stage.EFFECTIVENESS.completed_at_column: now,
            "is_effective": payload.is_effective,
            "effectiveness_evaluation": payload.evidence.strip(),
            "effectiveness_date": now.date(),
            "updated_at": now,
            "updated_by_id": ctx.actor_id,
        }
        if payload.is_effective:
            values.update(status=NCStatus.CLOSED.value, completion_date=now)

        result = self.session.execute(
            update(NonConformityModel)
            .where(
                NonConformityModel.id == nc.id,
                NonConformityModel.organization_id == ctx.organization_id,
                NonConformityModel.current_stage == int(FINAL_STAGE),
                NonConformityModel.status == NCStatus.OPEN.value,
                NonConformityModel.stage_6_completed_at.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(nc)
        if result.rowcount == 0:
            if nc.stage_6_completed_at is not None:
                raise AlreadyCompletedError("effectiveness_evaluation", str(nc.id), "evaluated")
            raise StaleStageError(str(nc.id), int(FINAL_STAGE), nc.current_stage)

        evaluation.is_effective = payload.is_effective
        evaluation.evidence = payload.evidence.strip()
        evaluation.requires_risk_update = payload.requires_risk_update
        evaluation.risk_update_notes = payload.risk_update_notes
        evaluation.requires_sgq_change = payload.requires_sgq_change
        evaluation.sgq_change_notes = payload.sgq_change_notes
        evaluation.evaluated_by_user_id = ctx.actor_id
        evaluation.evaluated_at = now
        self.session.flush()

        self._tasks.complete_open_task(nc.id, TaskType.EFFECTIVENESS, ctx.actor_id)

        if payload.is_effective:
            logger.info(
                "non_conformity_closed",
                extra={"nc_id": str(nc.id), "nc_number": nc.nc_number},
            )
            return EvaluationOutcome(non_conformity=nc.to_dto(), evaluation=evaluation.to_dto())

        revision = self._open_revision(ctx, nc)
        evaluation.generated_revision_id = revision.id
        self.session.flush()

        logger.info(
            "non_conformity_revised",
            extra={
                "nc_id": str(nc.id),
                "revision_id": str(revision.id),
                "revision_number": revision.revision_number,
                "entry_stage": revision.current_stage,
            },
        )
        return EvaluationOutcome(
            non_conformity=nc.to_dto(),
            evaluation=evaluation.to_dto(),
            revision=revision.to_dto(),
        )

    def _open_revision(self, ctx: CallerContext, parent: NonConformityModel) -> NonConformityModel:
        """Create the revision of ``parent`` at the policy's entry stage, with its task."""
        now = self._clock.now_utc()
        entry = Stage(self._policy.revision_entry_stage)

        revision = NonConformityModel(
            organization_id=parent.organization_id,
            nc_number=self._sequences.next_nc_number(
                parent.organization_id, now.date(), self._policy.nc_number_prefix
            ),
            title=parent.title,
            description=parent.description,
            category=parent.category,
            severity=parent.severity,
            source=parent.source,
            detected_date=parent.detected_date,
            damage_level=parent.damage_level,
            impact_analysis=parent.impact_analysis,
            sector=parent.sector,
            responsible_user_id=parent.responsible_user_id,
            status=NCStatus.OPEN.value,
            current_stage=int(entry),
            revision_number=parent.revision_number + 1,
            parent_non_conformity_id=parent.id,
            created_at=now,
            updated_at=now,
            created_by_id=ctx.actor_id,
        )
        for stage in Stage:
            if stage < entry:
                setattr(revision, stage.completed_at_column, parent.stage_completed_at(stage))
        self.session.add(revision)
        self.session.flush()

        self._tasks.create_task_for_stage(revision, entry, ctx.actor_id)
        return revision

    def _evaluation_row(self, nc_id: UUID) -> EffectivenessEvaluationModel | None:
        return self.session.execute(
            select(EffectivenessEvaluationModel).where(
                EffectivenessEvaluationModel.non_conformity_id == nc_id
            )
        ).scalar_one_or_none()
