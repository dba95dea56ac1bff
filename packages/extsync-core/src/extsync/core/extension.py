"""Synchronization engine for one extension.

``ExtensionContext.process()`` makes the output root reflect the extension's
current sources; ``process_deletion()`` removes everything it placed.

Process, step by step:

1. resolve the version token of every source (no mutation on failure)
2. load the file tracker and the stored snapshot; equal tokens -> no-op
3. download all sources into a private staging directory
4. pre-flight: no staged file may shadow extsync's own state files, and every
   staged file must be unowned or owned by this extension
5. delete the files of the previous snapshot (validated as a whole batch first)
6. move the staged files into place and record their ownership
7. commit: file tracker -> snapshot, then push the override ConfigMap

Tracker and snapshot always describe the same placed files. A failed push
leaves a pending marker in the output root; the next pass of any extension,
no-op passes included, pushes again.

Mutations of one output root are serialized by an in-process lock. Calls for
the same extension must be serialized by the caller.
"""

from __future__ import annotations

import logging
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from extsync.core.exception import FetchFailure, PersistenceFailure
from extsync.core.fetcher import download_to
from extsync.core.file_tracker import TRACKER_FILE_NAME, FileTracker, load_file_tracker, save_file_tracker, tracker_path
from extsync.core.observability import SyncObserver
from extsync.core.overrides import (
    PENDING_MARKER_FILE_NAME,
    OverrideSink,
    config_map_key_for,
    is_push_pending,
    rebuild_resource_overrides,
)
from extsync.core.revisions import resolve_revisions
from extsync.core.runtime.secrets import SecretLookup
from extsync.core.runtime.settings import Settings
from extsync.core.snapshot import delete_snapshot, load_snapshot, save_snapshot, should_download, snapshot_path
from extsync.core.spec import ExtensionResourceSpec, SourcesSnapshot
from extsync.core.storage import move_file, prune_empty_dirs, remove_file, rm_rf

log = logging.getLogger("extsync.core.extension")

_ROOT_LOCKS: Dict[str, threading.Lock] = {}
_ROOT_LOCKS_GUARD = threading.Lock()


def _root_lock(root: Path) -> threading.Lock:
    with _ROOT_LOCKS_GUARD:
        return _ROOT_LOCKS.setdefault(str(root), threading.Lock())


@dataclass
class ProcessResult:
    changed: bool
    reason: str = ""
    revisions: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)


@dataclass
class ExtensionStatus:
    name: str
    snapshot: SourcesSnapshot
    owned_files: List[str]

    @property
    def synced(self) -> bool:
        return bool(self.snapshot.revisions)


class ExtensionContext:
    def __init__(
        self,
        extension: ExtensionResourceSpec,
        *,
        settings: Settings,
        secrets: SecretLookup,
        sink: OverrideSink,
        http_transport: Optional[httpx.BaseTransport] = None,
    ):
        self.extension = extension
        self.name = extension.name
        self.settings = settings
        self.secrets = secrets
        self.sink = sink
        self.http_transport = http_transport
        self.output_root = Path(settings.output_root).expanduser().resolve()
        self.snapshot_path = snapshot_path(self.output_root, self.name)
        self.tracker_path = tracker_path(self.output_root)
        self.override_manifest = Path(settings.override_manifest_path).expanduser().resolve()

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    def process(self) -> ProcessResult:
        obs = SyncObserver(settings=self.settings, logger=log, extension=self.name, operation="process")
        obs.start()
        try:
            res = self._process()
        except Exception as e:
            obs.end(status="FAILED", reason=str(e))
            raise
        obs.end(status="SUCCESS", changed=res.changed, reason=res.reason)
        return res

    def process_deletion(self) -> ProcessResult:
        obs = SyncObserver(settings=self.settings, logger=log, extension=self.name, operation="process_deletion")
        obs.start()
        try:
            res = self._process_deletion()
        except Exception as e:
            obs.end(status="FAILED", reason=str(e))
            raise
        obs.end(status="SUCCESS", changed=res.changed, reason=res.reason)
        return res

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _process(self) -> ProcessResult:
        revisions = resolve_revisions(self.extension, secrets=self.secrets, settings=self.settings)

        # an unreadable ledger fails the call even when nothing changed
        load_file_tracker(self.tracker_path)
        prev = load_snapshot(self.snapshot_path)
        reason = should_download(prev, revisions)
        if not reason:
            log.info("Sources already downloaded. extension=%s", self.name)
            self._flush_pending_overrides()
            return ProcessResult(changed=False, revisions=revisions, files=list(prev.files))
        log.info("%s, redownloading... extension=%s", reason, self.name)

        staging = self._create_staging()
        try:
            download_to(
                self.extension,
                staging,
                secrets=self.secrets,
                settings=self.settings,
                http_transport=self.http_transport,
            )
            staged = self._walk_staged(staging)
            self._check_reserved(target for _, target in staged)

            with _root_lock(self.output_root):
                tracker = load_file_tracker(self.tracker_path)
                # nothing is touched unless the whole staged set can be placed
                tracker.check_ownership((target for _, target in staged), self.name, action="place")
                self._delete_files(tracker, prev.files)
                snapshot = self._move_files(tracker, revisions, staged)
                self._prune(prev.files)

                save_file_tracker(self.tracker_path, tracker)
                save_snapshot(self.snapshot_path, snapshot)
                rebuild_resource_overrides(self.output_root, namespace=self.extension.namespace, sink=self.sink)
        finally:
            self._remove_staging(staging)

        log.info("Successfully downloaded all sources. extension=%s files=%d", self.name, len(snapshot.files))
        return ProcessResult(changed=True, reason=reason, revisions=revisions, files=list(snapshot.files))

    def _process_deletion(self) -> ProcessResult:
        with _root_lock(self.output_root):
            snapshot = load_snapshot(self.snapshot_path)
            if snapshot.files:
                tracker = load_file_tracker(self.tracker_path)
                self._delete_files(tracker, snapshot.files)
                save_file_tracker(self.tracker_path, tracker)
                self._prune(snapshot.files)
            delete_snapshot(self.snapshot_path)
            if snapshot.files or is_push_pending(self.output_root):
                rebuild_resource_overrides(self.output_root, namespace=self.extension.namespace, sink=self.sink)
        log.info("Deleted extension files. extension=%s files=%d", self.name, len(snapshot.files))
        return ProcessResult(changed=bool(snapshot.files), reason="deleted", files=list(snapshot.files))

    def _flush_pending_overrides(self) -> None:
        with _root_lock(self.output_root):
            if not is_push_pending(self.output_root):
                return
            log.info("Re-pushing resource overrides left pending by an earlier pass. extension=%s", self.name)
            rebuild_resource_overrides(self.output_root, namespace=self.extension.namespace, sink=self.sink)

    def _is_reserved(self, target: str) -> bool:
        p = Path(target)
        if p == self.override_manifest:
            return True
        if p.parent != self.output_root:
            return False
        name = p.name
        return name in (TRACKER_FILE_NAME, PENDING_MARKER_FILE_NAME) or (name.startswith(".") and name.endswith(".snapshot"))

    def _check_reserved(self, targets: Iterable[str]) -> None:
        for t in targets:
            if self._is_reserved(t):
                raise FetchFailure(f'source file "{t}" collides with extsync state in {self.output_root}')

    def _create_staging(self) -> Path:
        try:
            if self.settings.staging_root:
                Path(self.settings.staging_root).mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=f"extsync_{self.name}_", dir=self.settings.staging_root))
        except OSError as e:
            log.error("Failed to create temp directory extension=%s", self.name, exc_info=True)
            raise PersistenceFailure(f"failed to create temp dir {e}") from e

    def _remove_staging(self, staging: Path) -> None:
        try:
            rm_rf(staging)
        except OSError:
            log.error("Failed to delete temp directory %s", staging, exc_info=True)

    def _walk_staged(self, staging: Path) -> List[Tuple[Path, str]]:
        out: List[Tuple[Path, str]] = []
        try:
            for p in sorted(staging.rglob("*")):
                if p.is_file() and not p.is_symlink():
                    out.append((p, str(self.output_root / p.relative_to(staging))))
        except OSError as e:
            raise PersistenceFailure(f"failed to list staged files in {staging}: {e}") from e
        return out

    def _within_root(self, path: str) -> bool:
        p = Path(path)
        return p.is_absolute() and self.output_root in p.parents

    def _delete_files(self, tracker: FileTracker, files: Iterable[str]) -> None:
        files = list(files)
        # validate the whole batch before the first unlink
        tracker.check_ownership(files, self.name, action="delete")
        for f in files:
            if not self._within_root(f):
                log.warning("ignoring snapshot entry outside the output root path=%s", f)
                continue
            try:
                remove_file(Path(f))
            except OSError as e:
                raise PersistenceFailure(f"failed to clean {self.output_root}: {e}") from e
            tracker.clear_metadata(f)

    def _move_files(self, tracker: FileTracker, revisions: List[str], staged: List[Tuple[Path, str]]) -> SourcesSnapshot:
        files: List[str] = []
        for src, target in staged:
            try:
                move_file(src, Path(target))
            except OSError as e:
                raise PersistenceFailure(f"failed to move source files: {e}") from e
            tracker.set_metadata(target, self.name, config_map_key_for(self.output_root, target))
            files.append(target)
        return SourcesSnapshot(revisions=list(revisions), files=files)

    def _prune(self, files: Iterable[str]) -> None:
        for parent in sorted({str(Path(f).parent) for f in files if self._within_root(f)}, reverse=True):
            prune_empty_dirs(Path(parent), self.output_root)


def extension_status(name: str, *, settings: Settings) -> ExtensionStatus:
    """Stored snapshot and tracker view of one extension (no remote access)."""
    root = Path(settings.output_root).expanduser().resolve()
    tracker = load_file_tracker(tracker_path(root))
    return ExtensionStatus(
        name=name,
        snapshot=load_snapshot(snapshot_path(root, name)),
        owned_files=tracker.files_by_owner(name),
    )
