"""
Module: nc_kernel.selectors.base
Responsibility: Read side of the kernel.  Selectors list, walk and report;
    they never add, delete, flush or commit.
Architecture position: Kernel > Selectors.  May import db/, models/ and
    domain/.  MUST NOT import services/.

Invariants enforced:
    - Every query starts from ``_scoped``, so rows of other organizations
      are invisible to list queries.
    - Single-row reads by id go through ``_owned``: a missing id raises
      NotFoundError and a foreign row raises AuthorizationError.
    - Results leave as frozen DTOs, never as ORM rows.
"""

from typing import ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from nc_kernel.db.base import OrganizationScopedBase
from nc_kernel.domain.dtos import CallerContext
from nc_kernel.exceptions import AuthorizationError, NotFoundError

ModelType = TypeVar("ModelType", bound=OrganizationScopedBase)


class BaseSelector(Generic[ModelType]):
    """Read-only queries over ``model`` for one caller's organization."""

    model: ClassVar[type[OrganizationScopedBase]]
    entity_type: ClassVar[str]

    def __init__(self, session: Session):
        self.session = session

    def _scoped(self, ctx: CallerContext) -> Select:
        return select(self.model).where(self.model.organization_id == ctx.organization_id)

    def _owned(self, ctx: CallerContext, entity_id: UUID) -> ModelType:
        row = self.session.get(self.model, entity_id)
        if row is None:
            raise NotFoundError(self.entity_type, str(entity_id))
        if row.organization_id != ctx.organization_id:
            raise AuthorizationError(
                str(ctx.actor_id),
                f"read {self.entity_type}",
                f"{self.entity_type} {entity_id} belongs to another organization",
            )
        return row
