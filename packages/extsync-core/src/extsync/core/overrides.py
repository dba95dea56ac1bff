"""Derived resource-override ConfigMap.

After every content change the union of all extensions' health scripts is
rebuilt from the shared layout::

    <output_root>/resources/<group>/<kind>/health.lua

into ``{"<group>/<kind>": {"health.lua": <script>}}`` and pushed, as the
``argocd-resource-override-cm`` ConfigMap, through an ``OverrideSink``. The
output root is the source of truth, so pushing is idempotent.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml

from extsync.core.exception import AggregationFailure, PersistenceFailure
from extsync.core.storage import atomic_write_text, remove_file

log = logging.getLogger("extsync.core.overrides")

RESOURCES_DIR = "resources"
HEALTH_SCRIPT = "health.lua"
PENDING_MARKER_FILE_NAME = ".overridesPending"
RESOURCE_OVERRIDE_CONFIG_MAP = "argocd-resource-override-cm"
PART_OF_LABEL = {"app.kubernetes.io/part-of": "argocd"}

ResourceOverrides = Dict[str, Dict[str, str]]


def config_map_key_for(output_root: str | Path, path: str | Path) -> str:
    """``<group>/<kind>`` for a file at ``resources/<group>/<kind>/...``, else ""."""
    try:
        rel = Path(path).relative_to(Path(output_root))
    except ValueError:
        return ""
    parts = rel.parts
    if len(parts) >= 4 and parts[0] == RESOURCES_DIR:
        return f"{parts[1]}/{parts[2]}"
    return ""


def _override_for_kind(kind_dir: Path) -> Dict[str, str]:
    script_path = kind_dir / HEALTH_SCRIPT
    try:
        script = script_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        script = ""
    except OSError as e:
        raise AggregationFailure(f"failed to read {script_path}: {e}") from e
    # an empty script is omitted, like an unset override field
    return {HEALTH_SCRIPT: script} if script else {}


def collect_resource_overrides(output_root: str | Path) -> ResourceOverrides:
    resources = Path(output_root) / RESOURCES_DIR
    if not resources.is_dir():
        return {}

    out: ResourceOverrides = {}
    for group_dir in sorted(resources.iterdir()):
        if not group_dir.is_dir():
            raise AggregationFailure(f'extension resource group "{group_dir.name}" is not a directory')
        for kind_dir in sorted(group_dir.iterdir()):
            if not kind_dir.is_dir():
                raise AggregationFailure(f'extension path "{group_dir}" is not a directory')
            key = f"{group_dir.name}/{kind_dir.name}"
            if key in out:
                raise AggregationFailure(f'resource override already defined for key "{key}"')
            out[key] = _override_for_kind(kind_dir)
    return out


def build_override_config_map(overrides: ResourceOverrides, namespace: str) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": RESOURCE_OVERRIDE_CONFIG_MAP,
            "namespace": namespace,
            "labels": dict(PART_OF_LABEL),
        },
        "data": {
            "resources": yaml.safe_dump(overrides, sort_keys=True, default_flow_style=False),
        },
    }


class OverrideSink(Protocol):
    """Create-or-update target for the override ConfigMap."""

    def push(self, config_map: Dict[str, Any]) -> None:
        ...


class FileOverrideSink:
    """Writes the ConfigMap manifest as YAML; unchanged content is not rewritten."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def push(self, config_map: Dict[str, Any]) -> None:
        text = yaml.safe_dump(config_map, sort_keys=True, default_flow_style=False)
        try:
            if self.path.read_text(encoding="utf-8") == text:
                return
        except FileNotFoundError:
            pass
        except OSError as e:
            raise AggregationFailure(f"failed to read {self.path}: {e}") from e
        atomic_write_text(self.path, text)


class MemoryOverrideSink:
    """Keeps every pushed ConfigMap (embedding and tests)."""

    def __init__(self) -> None:
        self.pushed: List[Dict[str, Any]] = []

    @property
    def current(self) -> Optional[Dict[str, Any]]:
        return self.pushed[-1] if self.pushed else None

    def push(self, config_map: Dict[str, Any]) -> None:
        self.pushed.append(config_map)


def pending_marker_path(output_root: str | Path) -> Path:
    return Path(output_root) / PENDING_MARKER_FILE_NAME


def is_push_pending(output_root: str | Path) -> bool:
    return pending_marker_path(output_root).exists()


def rebuild_resource_overrides(output_root: str | Path, *, namespace: str, sink: OverrideSink) -> ResourceOverrides:
    """Rebuild the override ConfigMap from ``output_root`` and push it.

    A marker file is kept in the output root until the push succeeded, so the
    next pass of any extension (including a no-op one) pushes again.
    """
    marker = pending_marker_path(output_root)
    atomic_write_text(marker, namespace)
    overrides = collect_resource_overrides(output_root)
    cm = build_override_config_map(overrides, namespace)
    try:
        sink.push(cm)
    except AggregationFailure:
        raise
    except Exception as e:
        raise AggregationFailure(f"failed to create/update resource override ConfigMap: {e}") from e
    try:
        remove_file(marker)
    except OSError as e:
        raise PersistenceFailure(f"failed to clear {marker}: {e}") from e
    log.debug("pushed resource overrides keys=%s", sorted(overrides))
    return overrides
