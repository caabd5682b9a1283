"""
Values -- Enumerated domain vocabulary for the non-conformity workflow.

Responsibility:
    Defines the closed sets of values that appear on non-conformities,
    stage records and tasks: severity, status, stage, task type, task
    status, priority, analysis method, action plan status, caller role and
    SLA bucket.  Stored values are the labels users see in the product
    (Portuguese), enum member names are English.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Stage <-> TaskType is a bijection: each stage produces exactly one
      task type and each task type belongs to exactly one stage.
    - Task status partition: every TaskStatus is either open or terminal.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from nc_kernel.exceptions import ValidationError


class Severity(str, Enum):
    """How serious a non-conformity is.  Ordered LOW < CRITICAL."""

    LOW = "Baixa"
    MEDIUM = "Média"
    HIGH = "Alta"
    CRITICAL = "Crítica"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class NCStatus(str, Enum):
    OPEN = "Aberta"
    CLOSED = "Fechada"


class TaskType(str, Enum):
    """Kind of work a task represents.  One per stage."""

    REGISTRATION = "registration"
    IMMEDIATE_ACTION = "immediate_action"
    CAUSE_ANALYSIS = "cause_analysis"
    PLANNING = "planning"
    IMPLEMENTATION = "implementation"
    EFFECTIVENESS = "effectiveness"

    @property
    def stage(self) -> Stage:
        return Stage[self.name]


class Stage(IntEnum):
    """
    The six ordered stages of the corrective action lifecycle.

    Stage numbers are the persisted representation of ``current_stage``.
    """

    REGISTRATION = 1
    IMMEDIATE_ACTION = 2
    CAUSE_ANALYSIS = 3
    PLANNING = 4
    IMPLEMENTATION = 5
    EFFECTIVENESS = 6

    @property
    def task_type(self) -> TaskType:
        return TaskType[self.name]

    @property
    def state_name(self) -> str:
        """Name of this stage in the stage workflow definition."""
        return self.name.lower()

    @property
    def title(self) -> str:
        return _STAGE_TITLES[self]

    @property
    def completed_at_column(self) -> str:
        """Column on the non-conformity row holding this stage's completion time."""
        return f"stage_{self.value}_completed_at"


FIRST_STAGE = Stage.REGISTRATION
FINAL_STAGE = Stage.EFFECTIVENESS

_STAGE_TITLES = {
    Stage.REGISTRATION: "Registro",
    Stage.IMMEDIATE_ACTION: "Ação Imediata",
    Stage.CAUSE_ANALYSIS: "Análise de Causa",
    Stage.PLANNING: "Planejamento",
    Stage.IMPLEMENTATION: "Implementação",
    Stage.EFFECTIVENESS: "Verificação de Eficácia",
}


class TaskStatus(str, Enum):
    """
    Task lifecycle.

    OVERDUE is a display state derived from the due date.  The scheduler
    never writes it, but rows carrying it are treated as open.
    """

    PENDING = "Pendente"
    IN_PROGRESS = "Em Andamento"
    COMPLETED = "Concluída"
    OVERDUE = "Atrasada"
    CANCELLED = "Cancelada"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED}
)
OPEN_TASK_STATUSES: frozenset[TaskStatus] = frozenset(TaskStatus) - TERMINAL_TASK_STATUSES


class TaskPriority(str, Enum):
    LOW = "Baixa"
    NORMAL = "Normal"
    HIGH = "Alta"
    URGENT = "Urgente"


class AnalysisMethod(str, Enum):
    ROOT_CAUSE = "root_cause"
    ISHIKAWA = "ishikawa"
    FIVE_WHYS = "5_whys"
    OTHER = "other"


class ActionPlanStatus(str, Enum):
    PLANNED = "Planejada"
    IN_EXECUTION = "Em Execução"
    COMPLETED = "Concluída"
    CANCELLED = "Cancelada"


class ImmediateActionStatus(str, Enum):
    PENDING = "Pendente"
    IN_PROGRESS = "Em Andamento"
    COMPLETED = "Concluída"
    CANCELLED = "Cancelada"


class CallerRole(str, Enum):
    """Role of the caller inside its organization."""

    VIEWER = "viewer"
    MEMBER = "member"
    ADMIN = "admin"


class SlaBucket(str, Enum):
    """Timeliness class of an open task relative to today."""

    ON_TIME = "on_time"
    DUE_SOON = "due_soon"
    DUE_TODAY = "due_today"
    OVERDUE = "overdue"


def coerce_enum(enum_cls: type[Enum], value, entity_type: str, field: str):
    """Accept an enum member or its stored value; raise ValidationError otherwise."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(repr(m.value) for m in enum_cls)
        raise ValidationError(entity_type, field, f"{value!r} is not one of {allowed}") from None
