"""Generic multi-protocol fetch primitive.

``get(dst, locator)`` downloads whatever ``locator`` points at into the local
directory ``dst``. Locators use the forced-getter form ``<getter>::<url>``:

- ``git::<repo-url>//<subdir>?ref=<rev>[&sshkey=<base64>][&insecure=true]``
  clones the repository, checks out ``ref`` (default branch when absent) and
  copies ``<subdir>`` (the whole tree when absent) into ``dst``. Credentials for
  HTTP(S) remotes are embedded in the URL.
- ``http::<url>`` downloads a single file. ``.zip``, ``.tar``, ``.tar.gz`` and
  ``.tgz`` payloads are unpacked into ``dst``; anything else is stored as
  ``dst/<basename of the URL path>``.

Without a forced getter the protocol is inferred from the URL scheme.
Getters are looked up through a small registry so additional protocols can be
plugged in with ``@register_getter("name")``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Protocol, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit

import httpx

from extsync.core.credentials import DEFAULT_SSH_USER, GitAuth, NoAuth, SSHPublicKeys, is_ssh_url, parse_bool
from extsync.core.exception import CredentialError, FetchFailure
from extsync.core.git import redact_userinfo, run_git
from extsync.core.runtime.settings import Settings

log = logging.getLogger("extsync.core.getter")

_FORCED_RE = re.compile(r"^([A-Za-z0-9]+)::(.+)$")
_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")


class Getter(Protocol):
    def get(self, dst: Path, url: str, *, settings: Settings, http_transport: Optional[httpx.BaseTransport] = None) -> None:
        ...


class GetterRegistry:
    """Registry of getters keyed by forced-getter name.

    Supports decorator registration:
        @registry.register("git")
        class GitGetter: ...
    """

    def __init__(self) -> None:
        self._items: Dict[str, Getter] = {}

    def register(self, *names: str):
        def deco(cls):
            inst = cls()
            for n in names:
                self._items[n] = inst
            return cls
        return deco

    def get(self, name: str) -> Getter:
        if name not in self._items:
            raise FetchFailure(f"Unknown getter: {name}. Loaded: {self.list()}")
        return self._items[name]

    def list(self) -> list[str]:
        return sorted(self._items.keys())


# Singleton registry used by the source fetcher
REGISTRY = GetterRegistry()


def register_getter(*names: str):
    return REGISTRY.register(*names)


def split_forced(locator: str) -> Tuple[str, str]:
    """``git::https://h/r`` -> (``git``, ``https://h/r``); ("", locator) when not forced."""
    m = _FORCED_RE.match(locator)
    if m:
        return m.group(1).lower(), m.group(2)
    return "", locator


def split_subdir(src: str) -> Tuple[str, str]:
    """Split ``url//subdir?query`` into (``url?query``, ``subdir``).

    The ``//`` of a ``scheme://`` prefix is not a subdir separator.
    """
    stop = src.find("?")
    if stop == -1:
        stop = len(src)
    offset = 0
    idx = src.find("://")
    if idx != -1:
        offset = idx + 3
    idx = src.find("//", offset, stop)
    if idx == -1:
        return src, ""
    base, subdir = src[:idx], src[idx + 2:]
    if "?" in subdir:
        subdir, query = subdir.split("?", 1)
        base = f"{base}?{query}"
    return base, subdir.strip("/")


def split_params(url: str, names: Tuple[str, ...]) -> Tuple[str, Dict[str, str]]:
    """Remove the getter options ``names`` from the query string of ``url``."""
    if "?" not in url:
        return url, {}
    base, query = url.split("?", 1)
    params: Dict[str, str] = {}
    rest: List[Tuple[str, str]] = []
    for k, v in parse_qsl(query, keep_blank_values=True):
        if k in names:
            params[k] = v
        else:
            rest.append((k, v))
    if rest:
        base = f"{base}?{urlencode(rest)}"
    return base, params


def detect_getter(url: str) -> str:
    if is_ssh_url(url)[0] or url.startswith("git://") or url.endswith(".git"):
        return "git"
    scheme = urlsplit(url).scheme.lower()
    if scheme in ("http", "https"):
        return "http"
    if scheme == "file":
        return "git"
    raise FetchFailure(f"cannot detect a getter for {redact_userinfo(url)}")


def _safe_dest(base: Path, rel: str) -> Path:
    base = base.resolve()
    cand = (base / rel.lstrip("/\\")).resolve()
    try:
        cand.relative_to(base)
    except ValueError:
        raise FetchFailure(f"dest path escapes dest_dir: {rel}") from None
    return cand


def _scratch_dir(settings: Settings, prefix: str) -> tempfile.TemporaryDirectory:
    if settings.staging_root:
        Path(settings.staging_root).mkdir(parents=True, exist_ok=True)
    return tempfile.TemporaryDirectory(prefix=prefix, dir=settings.staging_root)


def _ignore_vcs_and_links(directory: str, names: List[str]) -> List[str]:
    ignored = []
    for n in names:
        if n == ".git" or Path(directory, n).is_symlink():
            ignored.append(n)
    return ignored


@register_getter("git")
class GitGetter:
    """Clone + checkout with the git CLI, then copy the requested subdirectory."""

    def _auth(self, url: str, params: Dict[str, str], settings: Settings) -> GitAuth:
        try:
            insecure = parse_bool(params["insecure"]) if "insecure" in params else False
        except CredentialError as e:
            raise FetchFailure(str(e)) from e
        key = params.get("sshkey")
        if not key:
            return NoAuth(insecure=insecure)
        try:
            key_text = base64.b64decode(key, validate=True).decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise FetchFailure("sshkey parameter is not valid base64") from e
        user = is_ssh_url(url)[1] or DEFAULT_SSH_USER
        return SSHPublicKeys(user=user, private_key=key_text, insecure=insecure, known_hosts=settings.known_hosts_path)

    def get(self, dst: Path, url: str, *, settings: Settings, http_transport: Optional[httpx.BaseTransport] = None) -> None:
        src, subdir = split_subdir(url)
        src, params = split_params(src, ("ref", "sshkey", "insecure"))
        ref = params.get("ref", "")
        auth = self._auth(src, params, settings)

        with _scratch_dir(settings, "extsync_git_") as tmp:
            repo = Path(tmp) / "repo"
            run_git(["clone", "--quiet", src, str(repo)], settings=settings, auth=auth, url=src)
            if ref:
                run_git(["-c", "advice.detachedHead=false", "checkout", "--quiet", ref], settings=settings, cwd=repo)

            root = _safe_dest(repo, subdir) if subdir else repo
            if not root.is_dir():
                raise FetchFailure(f"subdirectory '{subdir}' not found in {redact_userinfo(src)}")
            dst.mkdir(parents=True, exist_ok=True)
            shutil.copytree(root, dst, dirs_exist_ok=True, ignore=_ignore_vcs_and_links)
        log.debug("fetched git url=%s ref=%s subdir=%s dst=%s", redact_userinfo(src), ref or "HEAD", subdir, dst)


@register_getter("http", "https")
class HttpGetter:
    """Single-file HTTP(S) download through httpx (archives are unpacked)."""

    def get(self, dst: Path, url: str, *, settings: Settings, http_transport: Optional[httpx.BaseTransport] = None) -> None:
        name = PurePosixPath(urlsplit(url).path).name or "download"
        dst.mkdir(parents=True, exist_ok=True)
        with _scratch_dir(settings, "extsync_http_") as tmp:
            payload = Path(tmp) / name
            try:
                with httpx.Client(timeout=settings.http_timeout, follow_redirects=True, transport=http_transport) as client:
                    with client.stream("GET", url) as resp:
                        resp.raise_for_status()
                        with payload.open("wb") as f:
                            for chunk in resp.iter_bytes():
                                f.write(chunk)
            except httpx.HTTPError as e:
                raise FetchFailure(f"failed to download {redact_userinfo(url)}: {e}") from e

            lower = name.lower()
            if lower.endswith(".zip"):
                _extract_zip(payload, dst)
            elif lower.endswith(_ARCHIVE_SUFFIXES):
                _extract_tar(payload, dst)
            else:
                shutil.move(str(payload), str(dst / name))
        log.debug("fetched http url=%s dst=%s", redact_userinfo(url), dst)


def _extract_zip(archive: Path, dst: Path) -> None:
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                target = _safe_dest(dst, info.filename)
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, target.open("wb") as out:
                    shutil.copyfileobj(src, out)
    except zipfile.BadZipFile as e:
        raise FetchFailure(f"invalid zip archive {archive.name}: {e}") from e


def _extract_tar(archive: Path, dst: Path) -> None:
    try:
        with tarfile.open(archive, "r:*") as tf:
            for member in tf.getmembers():
                target = _safe_dest(dst, member.name)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                if not member.isfile():
                    log.warning("skipping non-regular archive entry %s in %s", member.name, archive.name)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                src = tf.extractfile(member)
                if src is None:
                    continue
                with src, target.open("wb") as out:
                    shutil.copyfileobj(src, out)
    except tarfile.TarError as e:
        raise FetchFailure(f"invalid tar archive {archive.name}: {e}") from e


def get(dst: str | Path, locator: str, *, settings: Settings, http_transport: Optional[httpx.BaseTransport] = None) -> None:
    """Download ``locator`` into ``dst``; raises FetchFailure on any transport error."""
    forced, url = split_forced(locator)
    name = forced or detect_getter(url)
    try:
        REGISTRY.get(name).get(Path(dst), url, settings=settings, http_transport=http_transport)
    except OSError as e:
        # local filesystem errors while unpacking or copying (shutil.Error included)
        raise FetchFailure(f"failed to place {redact_userinfo(url)} into {dst}: {e}") from e
