"""
NonConformityRegistry -- Lifecycle of the non-conformity aggregate root.

Responsibility:
    Registers non-conformities (number allocation, stage 1 task), patches
    their descriptive fields, and removes them on administrative request.
    It is the only writer of non-workflow columns.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the module
    facade commits.

Invariants enforced:
    - Workflow-owned fields (stage, status, stage timestamps, revision
      lineage, evaluation outcome) are never written through ``patch``.
    - Closed and superseded records reject descriptive edits.
    - Open tasks follow the record: a severity edit re-derives their
      priority, a detection date edit their due date.
    - A record with revisions cannot be deleted; the lineage would break.

Failure modes:
    - ValidationError for a malformed draft or patch value.
    - ProtectedFieldError for workflow-owned fields in a patch.
    - NonConformityClosedError for edits to a closed/superseded record.
    - NotFoundError / AuthorizationError from the ownership check.

Audit relevance:
    Registration and every patch are logged with the changed field names.
"""

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from nc_kernel.domain.clock import Clock
from nc_kernel.domain.dtos import CallerContext, NonConformity, NonConformityDraft
from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.stages import validate_draft
from nc_kernel.domain.values import NCStatus, Severity, Stage, coerce_enum
from nc_kernel.exceptions import (
    InvariantViolation,
    NonConformityClosedError,
    ProtectedFieldError,
    ValidationError,
)
from nc_kernel.logging_config import get_logger
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.models.stage_records import EffectivenessEvaluationModel
from nc_kernel.services.base import BaseService
from nc_kernel.services.sequence_service import SequenceService
from nc_kernel.services.task_scheduler import TaskScheduler

logger = get_logger("services.registry")

PROTECTED_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "organization_id",
        "nc_number",
        "status",
        "current_stage",
        "completion_date",
        "revision_number",
        "parent_non_conformity_id",
        "is_effective",
        "effectiveness_evaluation",
        "effectiveness_date",
        "created_at",
        "created_by_id",
    }
    | {s.completed_at_column for s in Stage}
)

PATCHABLE_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "description",
        "category",
        "severity",
        "source",
        "detected_date",
        "damage_level",
        "impact_analysis",
        "sector",
        "responsible_user_id",
        "due_date",
        "preventive_actions",
    }
)

_REQUIRED_TEXT = frozenset({"title", "category"})


class NonConformityRegistry(BaseService[NonConformityModel]):
    """
    Create, read, patch and delete non-conformities.

    Contract:
        ``create`` returns a record at stage 1, status Open, revision 0,
        with exactly one open registration task.
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

    def load(self, ctx: CallerContext, nc_id: UUID, operation: str) -> NonConformityModel:
        return self._load_owned(NonConformityModel, nc_id, ctx, "non_conformity", operation)

    def create(self, ctx: CallerContext, draft: NonConformityDraft) -> NonConformity:
        draft = validate_draft(draft)
        now = self._clock.now_utc()

        nc = NonConformityModel(
            organization_id=ctx.organization_id,
            nc_number=self._sequences.next_nc_number(
                ctx.organization_id, now.date(), self._policy.nc_number_prefix
            ),
            title=draft.title,
            description=draft.description or "",
            category=draft.category,
            severity=draft.severity.value,
            source=draft.source or "",
            detected_date=draft.detected_date,
            damage_level=draft.damage_level,
            impact_analysis=draft.impact_analysis,
            sector=draft.sector,
            responsible_user_id=draft.responsible_user_id,
            due_date=draft.due_date,
            status=NCStatus.OPEN.value,
            current_stage=int(Stage.REGISTRATION),
            revision_number=0,
            created_at=now,
            updated_at=now,
            created_by_id=ctx.actor_id,
        )
        self.session.add(nc)
        self.session.flush()

        self._tasks.create_task_for_stage(nc, Stage.REGISTRATION, ctx.actor_id)

        logger.info(
            "non_conformity_registered",
            extra={
                "nc_id": str(nc.id),
                "nc_number": nc.nc_number,
                "severity": nc.severity,
                "category": nc.category,
            },
        )
        return nc.to_dto()

    def get(self, ctx: CallerContext, nc_id: UUID) -> NonConformity:
        return self.load(ctx, nc_id, "read non-conformity").to_dto()

    def patch(self, ctx: CallerContext, nc_id: UUID, fields: Mapping[str, Any]) -> NonConformity:
        """
        Update descriptive fields.

        Every key is checked before anything is written: one protected or
        unknown key rejects the whole patch.
        """
        protected = [k for k in fields if k in PROTECTED_FIELDS]
        if protected:
            raise ProtectedFieldError(str(nc_id), protected)
        unknown = sorted(k for k in fields if k not in PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError("non_conformity", unknown[0], "is not a patchable field")

        nc = self.load(ctx, nc_id, "update non-conformity")
        self._ensure_active(nc)

        values = dict(fields)
        for name in _REQUIRED_TEXT & values.keys():
            if values[name] is None or not str(values[name]).strip():
                raise ValidationError("non_conformity", name, "is required")
            values[name] = str(values[name]).strip()
        if "severity" in values:
            values["severity"] = coerce_enum(
                Severity, values["severity"], "non_conformity", "severity"
            ).value
        if "detected_date" in values and values["detected_date"] is None:
            raise ValidationError("non_conformity", "detected_date", "is required")

        severity_changed = "severity" in values and values["severity"] != nc.severity
        previous_detected_date = nc.detected_date
        detected_date_changed = (
            "detected_date" in values and values["detected_date"] != previous_detected_date
        )
        for name, value in values.items():
            setattr(nc, name, value)
        nc.touch(ctx.actor_id, self._clock.now_utc())
        self.session.flush()

        if severity_changed:
            self._tasks.reprioritize_open_tasks(nc.id, Severity(nc.severity), ctx.actor_id)
        if detected_date_changed:
            self._tasks.redate_open_tasks(nc, previous_detected_date, ctx.actor_id)

        logger.info(
            "non_conformity_updated",
            extra={"nc_id": str(nc.id), "fields": sorted(values)},
        )
        return nc.to_dto()

    def delete(self, ctx: CallerContext, nc_id: UUID) -> None:
        """
        Remove a non-conformity and everything it owns.

        A revision's parent keeps its evaluation, minus the link to the
        deleted revision.
        """
        nc = self.load(ctx, nc_id, "delete non-conformity")
        has_revisions = self.session.execute(
            select(NonConformityModel.id).where(
                NonConformityModel.parent_non_conformity_id == nc.id
            ).limit(1)
        ).first()
        if has_revisions is not None:
            raise InvariantViolation(
                "non_conformity",
                str(nc_id),
                "has revisions; delete the latest revision first",
            )

        self.session.execute(
            update(EffectivenessEvaluationModel)
            .where(EffectivenessEvaluationModel.generated_revision_id == nc.id)
            .values(generated_revision_id=None)
        )
        nc_number = nc.nc_number
        self.session.delete(nc)
        self.session.flush()

        logger.warning(
            "non_conformity_deleted",
            extra={"nc_id": str(nc_id), "nc_number": nc_number},
        )

    def _ensure_active(self, nc: NonConformityModel) -> None:
        if nc.status == NCStatus.CLOSED.value:
            raise NonConformityClosedError(str(nc.id), "closed")
        if nc.is_superseded:
            raise NonConformityClosedError(str(nc.id), "superseded by a revision")
