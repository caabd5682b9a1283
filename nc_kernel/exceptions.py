"""
Typed Exception Hierarchy for the NC Kernel.

===============================================================================
HANDLING ERRORS
===============================================================================

Callers of the workflow engine (the presentation layer, an API host, a
batch importer) must react to failures precisely: a stale stage is retried
after re-reading the record, a validation failure is shown next to the
offending field, a dependency failure becomes a generic internal error.

Every exception therefore carries:
  1. A TYPED class (catch by type, not by message)
  2. A ``code`` class attribute (machine-readable, API-safe)
  3. A ``kind`` class attribute (the discriminated error category)
  4. Structured DATA as attributes (not only a message string)

Example - handling a lost advance race:
    try:
        service.advance_stage(ctx, nc_id, expected_current_stage=2)
    except StaleStageError as e:
        nc = service.get_non_conformity(ctx, nc_id)   # re-fetch, then retry
    except StageRequirementNotMetError as e:
        api_response(code=e.code, stage=e.stage, requirement=e.requirement)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    NCKernelError (base)
    |
    +-- ValidationError
    |
    +-- InvariantViolation
    |   +-- StageRequirementNotMetError
    |   +-- StageOutOfRangeError
    |   +-- ProtectedFieldError
    |   +-- StageRecordLockedError
    |   +-- NonConformityClosedError
    |   +-- AlreadyCompletedError
    |
    +-- StaleStageError
    |
    +-- NotFoundError
    |
    +-- AuthorizationError
    |
    +-- DependencyError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind                | Code                        | When Raised
--------------------|-----------------------------|------------------------------------
validation          | VALIDATION_ERROR            | Missing/invalid field in a payload
--------------------|-----------------------------|------------------------------------
invariant_violation | INVARIANT_VIOLATION         | Generic workflow rule broken
                    | STAGE_REQUIREMENT_NOT_MET   | Leaving a stage without its record
                    | STAGE_OUT_OF_RANGE          | Advancing past stage 6
                    | PROTECTED_FIELD             | Patching workflow-owned fields
                    | STAGE_RECORD_LOCKED         | Editing a record outside its stage
                    | NON_CONFORMITY_CLOSED       | Mutating a closed/superseded NC
                    | ALREADY_COMPLETED           | Completing a task/evaluation twice
--------------------|-----------------------------|------------------------------------
stale_stage         | STALE_STAGE                 | Concurrent stage change won (retry)
--------------------|-----------------------------|------------------------------------
not_found           | NOT_FOUND                   | Unknown id within the tenant
--------------------|-----------------------------|------------------------------------
authorization       | AUTHORIZATION_DENIED        | Cross-tenant or insufficient role
--------------------|-----------------------------|------------------------------------
dependency          | DEPENDENCY_FAILURE          | Persistence layer failed

===============================================================================
RULES
===============================================================================

1. ``retryable`` is True only for StaleStageError.  It is the single error
   raised when no mutation happened *because* another caller moved the
   record first.  Every other kind is terminal for the call.

2. Cross-tenant access raises AuthorizationError, never NotFoundError.

3. DependencyError carries the persistence exception as ``__cause__`` and
   only its class name as structured data.  Driver messages stay out of
   the public payload.
"""


class NCKernelError(Exception):
    """
    Base exception for all NC kernel errors.

    All subclasses must have ``code`` and ``kind`` class attributes for
    machine-readable error identification.
    """

    code: str = "NC_KERNEL_ERROR"
    kind: str = "internal"
    retryable: bool = False

    def to_dict(self) -> dict:
        """Structured payload for API responses and logs."""
        payload = {"code": self.code, "kind": self.kind, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                payload[key] = value
        return payload


# Validation


class ValidationError(NCKernelError):
    """A required field is missing or a field value is invalid."""

    code: str = "VALIDATION_ERROR"
    kind: str = "validation"

    def __init__(self, entity_type: str, field: str, reason: str):
        self.entity_type = entity_type
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {entity_type}.{field}: {reason}")


# Invariant violations


class InvariantViolation(NCKernelError):
    """Base exception for workflow rule violations."""

    code: str = "INVARIANT_VIOLATION"
    kind: str = "invariant_violation"

    def __init__(self, entity_type: str, entity_id: str, detail: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        super().__init__(f"{entity_type} {entity_id}: {detail}")


class StageRequirementNotMetError(InvariantViolation):
    """The record required to complete the current stage is missing or incomplete."""

    code: str = "STAGE_REQUIREMENT_NOT_MET"

    def __init__(self, nc_id: str, stage: int, requirement: str, detail: str):
        self.stage = stage
        self.requirement = requirement
        super().__init__("non_conformity", nc_id, f"stage {stage} cannot be completed: {detail}")


class StageOutOfRangeError(InvariantViolation):
    """Attempted to advance past the final stage."""

    code: str = "STAGE_OUT_OF_RANGE"

    def __init__(self, nc_id: str, stage: int):
        self.stage = stage
        super().__init__(
            "non_conformity",
            nc_id,
            f"no stage after {stage}; stage 6 ends only through an effectiveness evaluation",
        )


class ProtectedFieldError(InvariantViolation):
    """Attempted to write a workflow-owned field directly."""

    code: str = "PROTECTED_FIELD"

    def __init__(self, nc_id: str, fields: list[str]):
        self.fields = sorted(fields)
        super().__init__(
            "non_conformity",
            nc_id,
            f"fields {', '.join(self.fields)} are owned by the workflow and cannot be patched",
        )


class StageRecordLockedError(InvariantViolation):
    """A stage record was edited before its stage opened or after it completed."""

    code: str = "STAGE_RECORD_LOCKED"

    def __init__(self, nc_id: str, stage: int, current_stage: int):
        self.stage = stage
        self.current_stage = current_stage
        super().__init__(
            "non_conformity",
            nc_id,
            f"stage {stage} record is not editable while the non-conformity is at stage {current_stage}",
        )


class NonConformityClosedError(InvariantViolation):
    """The non-conformity is closed or superseded by a revision."""

    code: str = "NON_CONFORMITY_CLOSED"

    def __init__(self, nc_id: str, state: str):
        self.state = state
        super().__init__("non_conformity", nc_id, f"non-conformity is {state}")


class AlreadyCompletedError(InvariantViolation):
    """A task or evaluation is already in a terminal state."""

    code: str = "ALREADY_COMPLETED"

    def __init__(self, entity_type: str, entity_id: str, status: str):
        self.status = status
        super().__init__(entity_type, entity_id, f"already in terminal state '{status}'")


# Concurrency


class StaleStageError(NCKernelError):
    """
    The caller's view of the current stage is out of date.

    Raised when a conditional update keyed on ``current_stage`` affects
    no row.  No mutation happened; the caller should re-fetch and retry.
    """

    code: str = "STALE_STAGE"
    kind: str = "stale_stage"
    retryable: bool = True

    def __init__(self, nc_id: str, expected_stage: int, actual_stage: int | None):
        self.nc_id = nc_id
        self.expected_stage = expected_stage
        self.actual_stage = actual_stage
        super().__init__(
            f"Non-conformity {nc_id} is at stage {actual_stage}, caller expected {expected_stage}"
        )


# Lookup and access


class NotFoundError(NCKernelError):
    """Entity with the given id does not exist."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class AuthorizationError(NCKernelError):
    """Caller may not perform this operation on this record."""

    code: str = "AUTHORIZATION_DENIED"
    kind: str = "authorization"

    def __init__(self, actor_id: str, operation: str, reason: str):
        self.actor_id = actor_id
        self.operation = operation
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {operation}: {reason}")


# Persistence


class DependencyError(NCKernelError):
    """The persistence layer failed.  Always surfaced, never retried internally."""

    code: str = "DEPENDENCY_FAILURE"
    kind: str = "dependency"

    def __init__(self, operation: str, cause_type: str):
        self.operation = operation
        self.cause_type = cause_type
        super().__init__(f"Persistence failure during {operation} ({cause_type})")
