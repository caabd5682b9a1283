"""
Non-Conformity Module (``nc_modules.nonconformity``).

Responsibility
--------------
Public entry point of the six-stage corrective action workflow:
registration, immediate action, cause analysis, planning, implementation
and effectiveness verification, together with the derived task list and
the SLA/dashboard reports.

Architecture position
---------------------
**Modules layer** -- ``NonConformityService`` is the only component that
commits.  Kernel services below it flush only.
"""

from nc_modules.nonconformity.service import NonConformityService

__all__ = ["NonConformityService"]
