from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from extsync.core.exception import PersistenceFailure

log = logging.getLogger("extsync.core.storage")


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` through a temp file + rename in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        # dst must be on same filesystem to be truly atomic.
        os.replace(tmp, str(path))
    except OSError as e:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise PersistenceFailure(f"failed to write {path}: {e}") from e


def move_file(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dst))


def remove_file(path: Path) -> bool:
    """Unlink ``path``; a file that is already gone counts as removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


def rm_rf(p: Path) -> None:
    """Remove a directory tree; errors propagate to the caller."""
    if not p.exists() and not p.is_symlink():
        return
    if p.is_symlink() or p.is_file():
        p.unlink()
        return
    shutil.rmtree(p)


def prune_empty_dirs(start: Path, stop: Path) -> None:
    """Remove empty directories from ``start`` upwards, never touching ``stop``."""
    stop = stop.resolve()
    cur = start.resolve()
    while cur != stop and stop in cur.parents:
        try:
            cur.rmdir()
        except OSError:
            # not empty (or already gone)
            if cur.exists():
                return
        cur = cur.parent
