"""Assemble the read-only view of a run used by templates, bindings and routing."""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, Optional

from ..contracts import StageStatus
from ..db import Run, StageRun
from .paths import BindingError, parse_path, resolve_path

_VISIBLE_STATUSES = (StageStatus.SUCCEEDED.value, StageStatus.SKIPPED.value)

_RESERVED_ROOT_KEYS = frozenset(
    {
        "run",
        "user_prompt",
        "seed",
        "mode",
        "inputs",
        "constraints",
        "tile_roles_supported",
        "prop_categories_supported",
        "context",
        "outputs",
    }
)


def stage_entry(output: Optional[Dict[str, Any]], artifacts: Optional[list]) -> Dict[str, Any]:
    """Context value for one stage: output keys at the top plus ``output`` and ``artifacts``."""
    output = copy.deepcopy(output or {})
    artifacts = copy.deepcopy(artifacts or [])
    return {**output, "output": output, "artifacts": artifacts}


def build_run_context(run: Run, latest_stage_runs: Iterable[StageRun]) -> Dict[str, Any]:
    """Build the context tree for ``run``.

    Entries persisted on the run come first and are overlaid by the latest
    succeeded or skipped stage runs. Everything is copied, so callers may
    mutate the result freely.
    """
    persisted = run.context or {}
    inputs = copy.deepcopy(persisted.get("inputs") or {})

    stages: Dict[str, Any] = {}
    for stage_key, entry in (persisted.get("context") or {}).items():
        entry = entry or {}
        stages[stage_key] = stage_entry(entry.get("output"), entry.get("artifacts"))
    for stage_run in latest_stage_runs:
        if stage_run.status in _VISIBLE_STATUSES:
            stages[stage_run.stage_key] = stage_entry(
                stage_run.output, stage_run.produced_artifacts
            )

    tree: Dict[str, Any] = {
        "run": {
            "id": str(run.id),
            "flow_id": str(run.flow_id),
            "mode": run.mode,
            "seed": run.seed,
        },
        "user_prompt": run.user_prompt,
        "seed": run.seed,
        "mode": run.mode,
        "inputs": inputs,
        "constraints": inputs.get("constraints"),
        "tile_roles_supported": inputs.get("tile_roles_supported"),
        "prop_categories_supported": inputs.get("prop_categories_supported"),
        "context": stages,
        "outputs": stages,
    }
    for stage_key, entry in stages.items():
        if stage_key not in _RESERVED_ROOT_KEYS:
            tree[stage_key] = entry
    return tree


def resolve_bindings(binding_map: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve ``$``-prefixed binding paths against ``context``.

    ``$`` alone is the whole context; ``$foo.bar[0]`` and ``$.foo.bar[0]`` are
    equivalent. Non-path values are passed through unchanged. Raises
    ``BindingError`` for malformed paths.
    """
    resolved: Dict[str, Any] = {}
    for name, value in (binding_map or {}).items():
        if isinstance(value, str) and value.startswith("$"):
            path = value[1:]
            if path.startswith("."):
                path = path[1:]
                if not path:
                    raise BindingError(f"Binding {name!r} has an empty path")
            resolved[name] = copy.deepcopy(resolve_path(context, parse_path(path)))
        else:
            resolved[name] = copy.deepcopy(value)
    return resolved
