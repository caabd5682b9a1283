"""Selectors for the non-conformity kernel (read side)."""

from nc_kernel.selectors.dashboard_selector import DashboardSelector
from nc_kernel.selectors.nc_selector import NonConformitySelector
from nc_kernel.selectors.task_selector import TaskSelector

__all__ = [
    "DashboardSelector",
    "NonConformitySelector",
    "TaskSelector",
]
