"""
Module: nc_kernel.db.base
Responsibility: Declarative bases shared by every NC table: UUID keys,
    timezone-aware timestamps, the actor columns of the quality record, and
    the organization column that scopes every workflow row to one tenant.
Architecture position: Kernel > DB.  Lowest import target of the kernel;
    MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row is keyed by a uuid4 stored as String(36) on all backends.
    - Workflow rows record who created them (NOT NULL) and who touched
      them last.
    - Rows below a non-conformity repeat its organization_id.  Selectors
      filter on that column alone and never join back to the parent.
"""

from datetime import date, datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import Date, DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID <-> 36-character string, so SQLite and PostgreSQL store the same text."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """Root of the NC schema.  ``int`` columns carry stage numbers, counters and order indexes."""

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Row that remembers its author and its last editor.

    ``created_at``/``updated_at`` default on the server.  ORM edits go
    through ``touch``; the conditional bulk UPDATEs of the workflow set the
    same two columns in their VALUES clause.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)

    def touch(self, actor_id: PyUUID, at: datetime | None = None) -> None:
        """Record ``actor_id`` as the last editor, stamping ``at`` when the caller owns the clock."""
        self.updated_by_id = actor_id
        if at is not None:
            self.updated_at = at


class OrganizationScopedBase(TrackedBase):
    """Tracked row owned by one organization."""

    __abstract__ = True

    organization_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)


UUID = PyUUID
