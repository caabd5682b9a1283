"""
Kernel Invariants Contract.

These invariants are structural law for the non-conformity workflow.  No
WorkflowPolicy, YAML configuration set, or caller role may override them.
Configuration may change lead times, thresholds and the revision entry
stage; it never changes *whether* these rules apply.

This module exists solely to declare these invariants explicitly.  The
enforcement is distributed across StageWorkflowController, TaskScheduler,
RevisionManager, the stage record stores and database constraints.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    STAGE_MONOTONICITY = "stage_monotonicity"
    """current_stage never decreases and moves by exactly one per advance.
    Enforced by the conditional UPDATE in StageWorkflowController and by
    the current_stage CHECK constraint."""

    STAGE_TIMESTAMPS = "stage_timestamps"
    """stage_k_completed_at is set exactly when current_stage > k, or when
    stage 6 has been evaluated.  Written only inside the same conditional
    UPDATE that moves the stage."""

    STAGE_EXIT_REQUIREMENTS = "stage_exit_requirements"
    """A stage cannot be completed without its record (immediate action,
    cause analysis, action plan, implemented plan).  Enforced by the guard
    table in nc_kernel.domain.stages."""

    SINGLE_OPEN_TASK = "single_open_task"
    """At most one open task per (non-conformity, task type).  Enforced by
    TaskScheduler and a partial unique index on nc_tasks."""

    CLOSED_IS_TERMINAL = "closed_is_terminal"
    """A closed or superseded non-conformity is never mutated again.
    Enforced by every write path before it touches the row."""

    REVISION_LINEAGE = "revision_lineage"
    """Every revision points to exactly one parent and carries
    revision_number = parent.revision_number + 1.  Written only by
    RevisionManager."""

    TENANT_ISOLATION = "tenant_isolation"
    """No operation reads or writes across organizations.  Enforced by the
    ownership check in BaseService._load_owned and organization-scoped
    selectors."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_import_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "nc_config",
    "nc_modules",
)
