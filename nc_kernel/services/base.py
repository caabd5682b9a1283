"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer, plus the tenant ownership check
    that every write path runs before touching a row.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The module
      service facade owns commit/rollback.
    - Tenant isolation: ``_load_owned`` raises AuthorizationError for a
      row of another organization and NotFoundError for a missing row.
    - ``_load_owned_for_update`` also locks the row (``SELECT ... FOR
      UPDATE``), so writers that lock the same non-conformity serialize.

Failure modes:
    - If a subclass calls ``session.commit()`` the atomicity of a
      multi-step operation (advance + task rotation, evaluate + revision)
      is broken.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from nc_kernel.db.base import OrganizationScopedBase
from nc_kernel.domain.clock import Clock, SystemClock
from nc_kernel.domain.dtos import CallerContext
from nc_kernel.exceptions import AuthorizationError, NotFoundError

ModelType = TypeVar("ModelType", bound=OrganizationScopedBase)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide list/report queries -- those belong in
          ``nc_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _load_owned(
        self,
        model_cls: type[ModelType],
        entity_id: UUID,
        ctx: CallerContext,
        entity_type: str,
        operation: str,
    ) -> ModelType:
        """Fetch a row by id and check it belongs to the caller's organization."""
        return self._check_owner(
            self.session.get(model_cls, entity_id), entity_id, ctx, entity_type, operation
        )

    def _load_owned_for_update(
        self,
        model_cls: type[ModelType],
        entity_id: UUID,
        ctx: CallerContext,
        entity_type: str,
        operation: str,
    ) -> ModelType:
        """Like ``_load_owned``, with a row lock held until the caller's transaction ends."""
        row = self.session.execute(
            select(model_cls)
            .where(model_cls.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return self._check_owner(row, entity_id, ctx, entity_type, operation)

    @staticmethod
    def _check_owner(
        row: ModelType | None,
        entity_id: UUID,
        ctx: CallerContext,
        entity_type: str,
        operation: str,
    ) -> ModelType:
        if row is None:
            raise NotFoundError(entity_type, str(entity_id))
        if row.organization_id != ctx.organization_id:
            raise AuthorizationError(
                str(ctx.actor_id),
                operation,
                f"{entity_type} {entity_id} belongs to another organization",
            )
        return row
