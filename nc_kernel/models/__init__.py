"""ORM models for the NC kernel."""

from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.models.sequence import SequenceCounter
from nc_kernel.models.stage_records import (
    ActionPlanItemModel,
    CauseAnalysisModel,
    EffectivenessEvaluationModel,
    ImmediateActionModel,
)
from nc_kernel.models.task import TaskModel

__all__ = [
    "NonConformityModel",
    "ImmediateActionModel",
    "CauseAnalysisModel",
    "ActionPlanItemModel",
    "EffectivenessEvaluationModel",
    "TaskModel",
    "SequenceCounter",
    "import_all_models",
]


def import_all_models() -> None:
    """Register every table on Base.metadata (done by importing this package)."""
