"""
nc_config -- single public entrypoint for workflow policy.

Responsibility:
    Provides the ONLY way to obtain the workflow policy at runtime through
    ``get_active_policy()``.  No other component reads the policy YAML
    files directly.

Architecture position:
    Configuration -- sits above ``nc_kernel`` and below ``nc_modules``.
    The kernel MUST NEVER import from ``nc_config``; it receives the
    resulting ``WorkflowPolicy`` by injection.

Invariants enforced:
    - Single entrypoint: all runtime policy flows through
      ``get_active_policy()``.
    - Deterministic identity: the same YAML document always produces the
      same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no policy set with the requested name.
    - ``KeyError`` / ``ValueError`` -- structurally invalid policy.

Audit relevance:
    Every successful call emits an ``NC_POLICY_TRACE`` log entry with the
    config_id, version, checksum and the tunables in force, tying stage
    due dates and SLA classification back to an exact policy version.
"""

from __future__ import annotations

import logging
from pathlib import Path

from nc_config.loader import load_policy_file
from nc_kernel.domain.policy import WorkflowPolicy

_logger = logging.getLogger("nc_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_policy(config_dir: Path | None = None, name: str = "default") -> WorkflowPolicy:
    """The ONLY public policy entrypoint.

    Args:
        config_dir: Override path to the policy sets directory.
            Defaults to nc_config/sets/.
        name: Policy set name; the file ``<name>.yaml`` is loaded.

    Raises:
        FileNotFoundError: If the policy set does not exist.
        ValueError: If the policy fails validation.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Policy set not found: {path}")

    policy = load_policy_file(path)

    _logger.info(
        "NC_POLICY_TRACE",
        extra={
            "trace_type": "NC_POLICY_TRACE",
            "config_id": policy.config_id,
            "config_version": policy.version,
            "checksum": policy.checksum,
            "stage_lead_days": list(policy.stage_lead_days),
            "due_soon_days": policy.due_soon_days,
            "revision_entry_stage": policy.revision_entry_stage,
        },
    )
    return policy


__all__ = ["WorkflowPolicy", "get_active_policy"]
