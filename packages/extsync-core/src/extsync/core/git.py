from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from extsync.core.credentials import GitAuth, NoAuth
from extsync.core.exception import FetchFailure, UnresolvedRevision
from extsync.core.runtime.settings import Settings
from extsync.core.spec import RemoteRef

log = logging.getLogger("extsync.core.git")

COMMIT_SHA_RE = re.compile(r"^[0-9A-Fa-f]{40}$")
TRUNCATED_COMMIT_SHA_RE = re.compile(r"^[0-9A-Fa-f]{7,}$")
_USERINFO_RE = re.compile(r"([A-Za-z][A-Za-z0-9+.-]*://)[^/@\s]+@")


def redact_userinfo(text: str) -> str:
    """Mask ``user:password@`` in any URL found in ``text``."""
    return _USERINFO_RE.sub(r"\1***@", text)


def is_commit_sha(sha: str) -> bool:
    """Whether a string is a full 40 character SHA-1."""
    return bool(COMMIT_SHA_RE.match(sha or ""))


def is_truncated_commit_sha(sha: str) -> bool:
    """Whether a string looks like an abbreviated SHA-1 (7+ hex characters)."""
    return bool(TRUNCATED_COMMIT_SHA_RE.match(sha or ""))


def run_git(
    args: Sequence[str],
    *,
    settings: Settings,
    auth: Optional[GitAuth] = None,
    url: Optional[str] = None,
    cwd: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """Run one git command with the auth handle's environment applied.

    Fails with FetchFailure on a non-zero exit; credentials embedded in the
    effective URL are redacted from the error text.
    """
    auth = auth or NoAuth()
    with auth.environment(url or "") as extra:
        env: Dict[str, str] = {**os.environ, "GIT_TERMINAL_PROMPT": "0", **extra}
        cmd = [settings.git_binary, *args]
        try:
            res = subprocess.run(cmd, cwd=str(cwd) if cwd else None, env=env, capture_output=True, text=True, check=False)
        except OSError as e:
            raise FetchFailure(f"failed to execute {settings.git_binary}: {e}") from e
    if res.returncode != 0:
        err = redact_userinfo((res.stderr or res.stdout or "").strip())
        raise FetchFailure(f"git {args[0]} failed (exit={res.returncode}): {err}")
    return res


def parse_ls_remote(output: str) -> List[RemoteRef]:
    """Parse `git ls-remote --symref` output into RemoteRef entries.

    Peeled tag entries (``refs/tags/x^{}``) are not references of their own and are skipped.
    """
    refs: List[RemoteRef] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or "\t" not in line:
            continue
        left, name = line.split("\t", 1)
        if left.startswith("ref: "):
            refs.append(RemoteRef(name=name, target=left[len("ref: "):].strip()))
            continue
        if name.endswith("^{}"):
            continue
        refs.append(RemoteRef(name=name, hash=left.strip()))
    return refs


def ls_remote(url: str, *, auth: Optional[GitAuth], settings: Settings) -> List[RemoteRef]:
    auth = auth or NoAuth()
    res = run_git(["ls-remote", "--symref", auth.apply(url)], settings=settings, auth=auth, url=url)
    return parse_ls_remote(res.stdout)


def resolve_revision(refs: Sequence[RemoteRef], revision: str, *, url: Optional[str] = None) -> str:
    """Resolve a branch, tag or symbolic ref name to a commit hash.

    Empty revision means HEAD. A symbolic reference is followed one level.
    """
    revision = revision or "HEAD"
    # ref name -> hash for every hash reference (e.g. refs/heads/master -> a67038ae...)
    ref_to_hash: Dict[str, str] = {}
    # set when the revision names a symbolic reference (like HEAD)
    ref_to_resolve = ""
    for ref in refs:
        if not ref.is_symbolic and ref.hash:
            ref_to_hash[ref.name] = ref.hash
        if ref.short_name == revision or ref.name == revision:
            if not ref.is_symbolic and ref.hash:
                return ref.hash
            if ref.is_symbolic:
                ref_to_resolve = ref.target or ""
    if ref_to_resolve and ref_to_resolve in ref_to_hash:
        return ref_to_hash[ref_to_resolve]
    raise UnresolvedRevision(revision, url=url)


def resolve_sha(url: str, revision: str, *, auth: Optional[GitAuth], settings: Settings) -> str:
    """Resolve ``revision`` of the repository at ``url`` to a commit SHA.

    Full and abbreviated SHAs are returned verbatim without touching the network.
    """
    if is_commit_sha(revision) or is_truncated_commit_sha(revision):
        return revision
    refs = ls_remote(url, auth=auth, settings=settings)
    sha = resolve_revision(refs, revision, url=url)
    log.debug("resolved url=%s revision=%s sha=%s", url, revision or "HEAD", sha)
    return sha
