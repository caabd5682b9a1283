"""
NC Kernel - Non-Conformity corrective/preventive action workflow.

A transactional workflow engine with:
- Strictly ordered six-stage progression
- Optimistic concurrency keyed on the current stage
- Derived task scheduling with policy-driven deadlines
- Read-side SLA classification and dashboard aggregation
- Self-reopening revisions after failed effectiveness checks
"""

__version__ = "0.1.0"
