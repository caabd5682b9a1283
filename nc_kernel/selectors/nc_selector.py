"""
Module: nc_kernel.selectors.nc_selector
Responsibility: Filtered listing of non-conformities and revision lineage walks.

Invariants enforced:
    - Only the caller's organization is ever visible.
    - ``revision_chain`` is ordered from the original record to the newest
      revision, following parent_non_conformity_id.
"""

from uuid import UUID

from sqlalchemy import and_, not_, select

from nc_kernel.domain.dtos import CallerContext, NonConformity, NonConformityFilter
from nc_kernel.domain.values import NCStatus
from nc_kernel.models.non_conformity import NonConformityModel
from nc_kernel.selectors.base import BaseSelector


class NonConformitySelector(BaseSelector[NonConformityModel]):
    """Read access to non-conformity records."""

    model = NonConformityModel
    entity_type = "non_conformity"

    def get(self, ctx: CallerContext, nc_id: UUID) -> NonConformity:
        return self._owned(ctx, nc_id).to_dto()

    def list_records(
        self,
        ctx: CallerContext,
        filters: NonConformityFilter | None = None,
        limit: int | None = None,
    ) -> list[NonConformity]:
        """Records newest first."""
        filters = filters or NonConformityFilter()
        stmt = self._scoped(ctx)
        if filters.status is not None:
            stmt = stmt.where(NonConformityModel.status == filters.status.value)
        if filters.current_stage is not None:
            stmt = stmt.where(NonConformityModel.current_stage == int(filters.current_stage))
        if filters.severity is not None:
            stmt = stmt.where(NonConformityModel.severity == filters.severity.value)
        if filters.category is not None:
            stmt = stmt.where(NonConformityModel.category == filters.category)
        if filters.responsible_user_id is not None:
            stmt = stmt.where(
                NonConformityModel.responsible_user_id == filters.responsible_user_id
            )
        if filters.detected_from is not None:
            stmt = stmt.where(NonConformityModel.detected_date >= filters.detected_from)
        if filters.detected_to is not None:
            stmt = stmt.where(NonConformityModel.detected_date <= filters.detected_to)
        if not filters.include_superseded:
            stmt = stmt.where(
                not_(
                    and_(
                        NonConformityModel.status == NCStatus.OPEN.value,
                        NonConformityModel.is_effective.is_(False),
                    )
                )
            )
        stmt = stmt.order_by(
            NonConformityModel.created_at.desc(), NonConformityModel.nc_number.desc()
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def revision_chain(self, ctx: CallerContext, nc_id: UUID) -> list[NonConformity]:
        """Every record in the lineage of ``nc_id``, original first."""
        row = self._owned(ctx, nc_id)

        while row.parent_non_conformity_id is not None:
            row = self.session.get(NonConformityModel, row.parent_non_conformity_id)

        chain = [row]
        while True:
            child = self.session.execute(
                select(NonConformityModel).where(
                    NonConformityModel.parent_non_conformity_id == chain[-1].id,
                    NonConformityModel.organization_id == ctx.organization_id,
                )
            ).scalar_one_or_none()
            if child is None:
                break
            chain.append(child)
        return [r.to_dto() for r in chain]
