"""Ownership ledger of every file placed under the shared output root.

One tracker file per output root (``<output_root>/.fileTracker``) maps an
absolute file path to the extension that placed it. The engine consults it
before overwriting or deleting anything, so one extension can never clobber
another extension's files.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from extsync.core.exception import OwnershipConflict, PersistenceFailure
from extsync.core.spec import FileTrackerDocument, TrackedFile
from extsync.core.storage import atomic_write_text

log = logging.getLogger("extsync.core.file_tracker")

TRACKER_FILE_NAME = ".fileTracker"


def tracker_path(output_root: str | Path) -> Path:
    return Path(output_root) / TRACKER_FILE_NAME


class FileTracker:
    def __init__(self, document: Optional[FileTrackerDocument] = None):
        self.document = document or FileTrackerDocument()

    @property
    def files(self):
        return self.document.files

    def is_tracked(self, path: str) -> bool:
        return path in self.files

    def is_owner(self, path: str, owner: str) -> bool:
        meta = self.files.get(path)
        return meta is not None and meta.owner == owner

    def get_owner(self, path: str) -> str:
        meta = self.files.get(path)
        return meta.owner if meta is not None else ""

    def set_metadata(self, path: str, owner: str, config_map_key: str = "") -> None:
        self.files[path] = TrackedFile(owner=owner, config_map_key=config_map_key)

    def clear_metadata(self, path: str) -> None:
        self.files.pop(path, None)

    def files_by_owner(self, owner: str) -> List[str]:
        return sorted(p for p, meta in self.files.items() if meta.owner == owner)

    def find_conflict(self, paths: Iterable[str], owner: str, *, action: str = "place") -> Optional[OwnershipConflict]:
        """First path in ``paths`` tracked by someone other than ``owner`` (pure check)."""
        for p in paths:
            if self.is_tracked(p) and not self.is_owner(p, owner):
                return OwnershipConflict(p, owner=self.get_owner(p), requested_by=owner, action=action)
        return None

    def check_ownership(self, paths: Iterable[str], owner: str, *, action: str = "place") -> None:
        conflict = self.find_conflict(paths, owner, action=action)
        if conflict is not None:
            raise conflict


def load_file_tracker(path: Path) -> FileTracker:
    """Load the ledger; a missing file is an empty ledger, an unreadable one is an error."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return FileTracker()
    except OSError as e:
        raise PersistenceFailure(f"failed to load file tracker {path}: {e}") from e
    try:
        return FileTracker(FileTrackerDocument.model_validate(json.loads(raw) or {}))
    except (ValueError, ValidationError) as e:
        raise PersistenceFailure(f"failed to load file tracker {path}: {e}") from e


def save_file_tracker(path: Path, tracker: FileTracker) -> None:
    payload = tracker.document.model_dump(by_alias=True)
    try:
        atomic_write_text(path, json.dumps(payload, ensure_ascii=False, separators=(",", ":")))
    except PersistenceFailure as e:
        raise PersistenceFailure(f"failed to persist file tracker: {e}") from e
    log.debug("saved file tracker path=%s entries=%d", path, len(tracker.files))
