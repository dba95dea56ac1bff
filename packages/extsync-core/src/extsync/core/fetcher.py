from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode, urlsplit

import httpx

from extsync.core import getter
from extsync.core.credentials import DEFAULT_HTTP_USER, DEFAULT_SSH_USER, get_git_creds, is_ssh_url, secret_for
from extsync.core.exception import FetchFailure
from extsync.core.git import redact_userinfo
from extsync.core.runtime.secrets import SecretData, SecretLookup
from extsync.core.runtime.settings import Settings
from extsync.core.spec import ExtensionResourceSpec, GitSourceSpec

log = logging.getLogger("extsync.core.fetcher")

RESOURCES_DIR = "resources"
DEFAULT_BASE_DIRECTORY = "resources"


def _ssh_location(url: str) -> tuple[str, str, str]:
    """(user, host[:port], /path) of an ssh:// or scp-like URL."""
    if url.startswith("ssh://"):
        parts = urlsplit(url)
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        return parts.username or "", host, parts.path
    user, rest = url.split("@", 1)
    host, _, path = rest.partition(":")
    return user, host, "/" + path.lstrip("/")


def git_locator(source: GitSourceSpec, secret: SecretData, *, base_directory: str) -> str:
    """Build the ``git::`` locator of one git source.

    SSH keys travel base64-encoded in the ``sshkey`` parameter; HTTP(S)
    credentials are embedded in the URL.
    """
    creds = get_git_creds(source.url, secret)
    params: dict[str, str] = {}
    if source.revision:
        params["ref"] = source.revision

    if is_ssh_url(source.url)[0]:
        user, host, path = _ssh_location(source.url)
        if creds.ssh_private_key:
            params["sshkey"] = base64.b64encode(creds.ssh_private_key.encode("utf-8")).decode("ascii")
        remote = f"ssh://{user or DEFAULT_SSH_USER}@{host}{path}"
    else:
        parts = urlsplit(source.url)
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        userinfo = ""
        if creds.username or creds.password:
            userinfo = f"{quote(creds.username or DEFAULT_HTTP_USER, safe='')}:{quote(creds.password, safe='')}@"
        remote = f"{parts.scheme}://{userinfo}{host}{parts.path}"

    if creds.insecure:
        params["insecure"] = "true"
    locator = f"git::{remote}//{base_directory.strip('/')}"
    if params:
        locator = f"{locator}?{urlencode(params)}"
    return locator


def web_locator(url: str) -> str:
    return f"http::{url}"


def download_to(
    extension: ExtensionResourceSpec,
    staging: str | Path,
    *,
    secrets: SecretLookup,
    settings: Settings,
    http_transport: Optional[httpx.BaseTransport] = None,
) -> None:
    """Fetch every source of ``extension`` into the staging directory.

    Git content goes to ``<staging>/resources``; web content to the staging
    root. The first failing source aborts the whole download.
    """
    staging = Path(staging)
    base_directory = extension.spec.base_directory or DEFAULT_BASE_DIRECTORY
    for idx, source in enumerate(extension.spec.sources):
        if source.git is not None:
            secret = secret_for(source.git, secrets, default_namespace=extension.namespace)
            locator = git_locator(source.git, secret, base_directory=base_directory)
            dst = staging / RESOURCES_DIR
        else:
            assert source.web is not None
            locator = web_locator(source.web.url)
            dst = staging
        try:
            getter.get(dst, locator, settings=settings, http_transport=http_transport)
        except FetchFailure as e:
            raise FetchFailure(f"source #{idx + 1} ({redact_userinfo(source.url)}): {e}") from e
        log.info("downloaded source=%s extension=%s", source.url, extension.name)
