"""Database layer - engine, declarative bases and column types."""

from nc_kernel.db.base import UUID, Base, OrganizationScopedBase, TrackedBase, UUIDString
from nc_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "is_postgres",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "OrganizationScopedBase",
    "UUIDString",
    "UUID",
]
