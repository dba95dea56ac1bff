"""Per-extension record of the last successful sync.

The snapshot lives next to the placed content as ``<output_root>/.<name>.snapshot``
(indented JSON ``{"revisions": [...], "files": [...]}``). A missing or corrupt
snapshot loads as the empty snapshot, which means "never synced".
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from extsync.core.exception import PersistenceFailure
from extsync.core.spec import SourcesSnapshot
from extsync.core.storage import atomic_write_text, remove_file

log = logging.getLogger("extsync.core.snapshot")


def should_download(snapshot: SourcesSnapshot, revisions: Sequence[str]) -> str:
    """Reason to re-download, or "" when the snapshot is up to date."""
    if len(snapshot.revisions) == 0:
        return "Sources has not been downloaded yet"
    if len(snapshot.revisions) != len(revisions):
        return f"Sources number has changed from {len(snapshot.revisions)} to {len(revisions)}"
    for i, (before, after) in enumerate(zip(snapshot.revisions, revisions)):
        if before != after:
            return f"Source #{i} has changed from {before} to {after}"
    return ""


def snapshot_path(output_root: str | Path, name: str) -> Path:
    return Path(output_root) / f".{name}.snapshot"


def load_snapshot(path: Path) -> SourcesSnapshot:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return SourcesSnapshot()
    except OSError:
        log.warning("failed reading snapshot %s; treating as never synced", path, exc_info=True)
        return SourcesSnapshot()
    try:
        return SourcesSnapshot.model_validate(json.loads(raw) or {})
    except (ValueError, ValidationError):
        log.warning("corrupt snapshot %s; treating as never synced", path, exc_info=True)
        return SourcesSnapshot()


def save_snapshot(path: Path, snapshot: SourcesSnapshot) -> None:
    try:
        atomic_write_text(path, json.dumps(snapshot.model_dump(), indent=2, ensure_ascii=False))
    except PersistenceFailure as e:
        raise PersistenceFailure(f"failed to persist download sources revisions: {e}") from e


def delete_snapshot(path: Path) -> None:
    try:
        remove_file(path)
    except OSError as e:
        raise PersistenceFailure(f"failed to delete snapshot {path}: {e}") from e
