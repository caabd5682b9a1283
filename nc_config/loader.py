"""
Policy loader (``nc_config.loader``).

Responsibility
--------------
Loads a policy YAML file and parses it into the frozen
``nc_kernel.domain.policy.WorkflowPolicy``.  This is internal tooling; the
single runtime entry point is ``nc_config.get_active_policy()``.

Invariants enforced
-------------------
* Every stage of the workflow must have a ``lead_days`` entry; a missing
  stage is an error, never a silent default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document, independent of key order and formatting.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError`` (from here or from
  ``WorkflowPolicy.__post_init__``).
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from nc_kernel.domain.policy import WorkflowPolicy
from nc_kernel.domain.values import Severity, Stage, TaskPriority


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed configuration document."""
    canonical = json.dumps(data, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_stage_lead_days(data: dict[str, Any]) -> tuple[int, ...]:
    """Lead days in stage order.  Keys are stage names (``cause_analysis``) or numbers."""
    by_key = {str(k).lower(): v for k, v in data.items()}
    lead_days = []
    for stage in Stage:
        entry = by_key.get(stage.state_name, by_key.get(str(int(stage))))
        if entry is None:
            raise KeyError(f"stages.{stage.state_name}")
        value = entry["lead_days"] if isinstance(entry, dict) else entry
        lead_days.append(int(value))
    return tuple(lead_days)


def parse_stage_ref(value: Any) -> int:
    """A stage given by number (``2``) or name (``immediate_action``)."""
    if isinstance(value, int):
        return int(Stage(value))
    try:
        return int(Stage[str(value).upper()])
    except KeyError:
        raise ValueError(f"Unknown stage {value!r}") from None


def parse_severity_priority(data: dict[str, Any]) -> MappingProxyType:
    return MappingProxyType(
        {Severity(str(k)): TaskPriority(str(v)) for k, v in data.items()}
    )


def parse_policy(data: dict[str, Any]) -> WorkflowPolicy:
    """
    Build a WorkflowPolicy from a parsed YAML document.

    Optional sections fall back to the WorkflowPolicy defaults; the
    ``stages`` section is required.
    """
    defaults = WorkflowPolicy.with_defaults()
    sla = data.get("sla") or {}
    dashboard = data.get("dashboard") or {}
    revision = data.get("revision") or {}
    numbering = data.get("numbering") or {}

    kwargs: dict[str, Any] = {
        "config_id": str(data.get("config_id", defaults.config_id)),
        "version": int(data.get("version", defaults.version)),
        "checksum": compute_checksum(data),
        "stage_lead_days": parse_stage_lead_days(data["stages"]),
        "due_soon_days": int(sla.get("due_soon_days", defaults.due_soon_days)),
        "most_overdue_limit": int(sla.get("most_overdue_limit", defaults.most_overdue_limit)),
        "trend_months": int(dashboard.get("trend_months", defaults.trend_months)),
        "revision_entry_stage": parse_stage_ref(
            revision.get("entry_stage", defaults.revision_entry_stage)
        ),
        "nc_number_prefix": str(numbering.get("prefix", defaults.nc_number_prefix)),
    }
    if data.get("severity_priority"):
        kwargs["severity_priority"] = parse_severity_priority(data["severity_priority"])
    return WorkflowPolicy(**kwargs)


def load_policy_file(path: Path) -> WorkflowPolicy:
    return parse_policy(load_yaml_file(path))
