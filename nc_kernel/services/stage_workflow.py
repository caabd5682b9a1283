"""
StageWorkflowController -- Ordered stage progression with compare-and-swap.

Responsibility:
    Moves a non-conformity from its current stage to the next one: checks
    the caller's view of the stage, evaluates the exit guard of the stage
    being left, writes the stage move through a single conditional UPDATE,
    and rotates the stage tasks in the same unit of work.

Architecture position:
    Kernel > Services -- imperative shell.  Sequences the registry, the
    stage record snapshot and the TaskScheduler.  Flushes only.

Invariants enforced:
    - Stage monotonicity: ``current_stage`` moves by exactly one, only
      forward, and only when the row still holds the caller's expected
      stage (``UPDATE ... WHERE current_stage = :expected``).
    - Stage timestamps: ``stage_k_completed_at`` is written in the same
      statement that moves the stage past k.
    - Stage exit requirements: guard evaluation through
      ``NC_STAGE_WORKFLOW`` before the move.  The non-conformity row is
      locked before the stage records are read, and every stage record
      write takes the same lock, so the guard never passes on records a
      concurrent transaction is changing.
    - Stage 6 is left only through the RevisionManager.

Failure modes:
    - StaleStageError when the expected stage differs from the stored one,
      either at read time or when the conditional UPDATE matches no row.
    - StageRequirementNotMetError when the stage's record is missing.
    - StageOutOfRangeError when advancing from stage 6.
    - NonConformityClosedError for closed/superseded records.

Audit relevance:
    Each advance logs the from/to stages with the actor, and leaves the
    completed outgoing task plus the stage completion timestamp behind.
"""

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from nc_kernel.domain.clock import Clock
from nc_kernel.domain.dtos import CallerContext, NonConformity
from nc_kernel.domain.stages import StageSnapshot, unmet_exit_requirement
from nc_kernel.domain.values import FINAL_STAGE, NCStatus, Stage
from nc_kernel.exceptions import (
    NonConformityClosedError,
    StageOutOfRangeError,
    StageRequirementNotMetError,
    StaleStageError,
)
from nc_kernel.logging_config import get_logger
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.services.base import BaseService
from nc_kernel.services.stage_record_service import load_stage_snapshot
from nc_kernel.services.task_scheduler import TaskScheduler

logger = get_logger("services.stage_workflow")


class StageWorkflowController(BaseService[NonConformityModel]):
    """
    The only writer of ``current_stage`` for stages 1 to 5.

    Contract:
        ``advance`` either moves the record exactly one stage forward with
        its tasks rotated, or raises without changing anything.
    """

    def __init__(
        self,
        session: Session,
        task_scheduler: TaskScheduler,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._tasks = task_scheduler

    def advance(self, ctx: CallerContext, nc_id: UUID, expected_current_stage: int) -> NonConformity:
        nc = self._load_owned_for_update(
            NonConformityModel, nc_id, ctx, "non_conformity", "advance stage"
        )

        if nc.current_stage != expected_current_stage:
            raise StaleStageError(str(nc_id), expected_current_stage, nc.current_stage)
        if nc.status == NCStatus.CLOSED.value:
            raise NonConformityClosedError(str(nc_id), "closed")
        if nc.is_superseded:
            raise NonConformityClosedError(str(nc_id), "superseded by a revision")

        leaving = Stage(nc.current_stage)
        if leaving == FINAL_STAGE:
            raise StageOutOfRangeError(str(nc_id), int(leaving))

        snapshot = load_stage_snapshot(self.session, nc)
        unmet = unmet_exit_requirement(snapshot)
        if unmet is not None:
            guard, reason = unmet
            logger.warning(
                "stage_requirement_not_met",
                extra={"nc_id": str(nc_id), "stage": int(leaving), "guard": guard.name, "reason": reason},
            )
            raise StageRequirementNotMetError(str(nc_id), int(leaving), guard.name, reason)

        entering = Stage(leaving + 1)
        now = self._clock.now_utc()
        values = {
            "current_stage": int(entering),
            leaving.completed_at_column: now,
            "updated_at": now,
            "updated_by_id": ctx.actor_id,
        }
        values.update(self._carried_analysis(leaving, snapshot))

        result = self.session.execute(
            update(NonConformityModel)
            .where(
                NonConformityModel.id == nc_id,
                NonConformityModel.organization_id == ctx.organization_id,
                NonConformityModel.current_stage == expected_current_stage,
                NonConformityModel.status == NCStatus.OPEN.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(nc)
        if result.rowcount == 0:
            logger.info(
                "stage_advance_lost_race",
                extra={"nc_id": str(nc_id), "expected_stage": expected_current_stage},
            )
            raise StaleStageError(str(nc_id), expected_current_stage, nc.current_stage)

        self._tasks.complete_open_task(nc.id, leaving.task_type, ctx.actor_id)
        self._tasks.create_task_for_stage(nc, entering, ctx.actor_id)

        logger.info(
            "stage_advanced",
            extra={
                "nc_id": str(nc_id),
                "nc_number": nc.nc_number,
                "from_stage": int(leaving),
                "to_stage": int(entering),
            },
        )
        return nc.to_dto()

    @staticmethod
    def _carried_analysis(leaving: Stage, snapshot: StageSnapshot) -> dict:
        """Summaries copied onto the non-conformity when their stage completes."""
        if leaving == Stage.CAUSE_ANALYSIS and snapshot.cause_analysis is not None:
            return {"root_cause_analysis": snapshot.cause_analysis.root_cause}
        if leaving == Stage.PLANNING:
            return {
                "corrective_actions": "\n".join(
                    f"{i.order_index}. {i.what_action}" for i in snapshot.live_action_plan
                )
            }
        return {}
