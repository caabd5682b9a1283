"""Services for the non-conformity kernel (write side)."""

from nc_kernel.services.registry_service import NonConformityRegistry
from nc_kernel.services.revision_service import RevisionManager
from nc_kernel.services.sequence_service import SequenceService
from nc_kernel.services.stage_record_service import (
    ActionPlanStore,
    CauseAnalysisStore,
    ImmediateActionStore,
    load_stage_snapshot,
)
from nc_kernel.services.stage_workflow import StageWorkflowController
from nc_kernel.services.task_scheduler import TaskScheduler

__all__ = [
    "ActionPlanStore",
    "CauseAnalysisStore",
    "ImmediateActionStore",
    "NonConformityRegistry",
    "RevisionManager",
    "SequenceService",
    "StageWorkflowController",
    "TaskScheduler",
    "load_stage_snapshot",
]
