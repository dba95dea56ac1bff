"""Transport credentials for git sources.

A source's secret payload is turned into ``GitCreds`` (what the secret says)
and then into an auth handle (how the transport uses it):

- ``ssh://`` (or scp-like ``user@host:path``): an ``sshkey`` entry is required;
  the key is parsed with paramiko and handed to the ssh client through
  ``GIT_SSH_COMMAND``. Host keys are verified against the known-hosts store
  unless ``insecure`` is set.
- ``http://`` / ``https://``: optional ``git_user`` / ``git_token`` entries give
  basic auth (username defaults to ``x-access-token`` when only a token is
  supplied); without them access is anonymous.
- ``insecure`` disables TLS / host-key verification for that source.
"""

from __future__ import annotations

import io
import logging
import os
import re
import shlex
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import paramiko

from extsync.core.exception import CredentialError, MissingCredential
from extsync.core.runtime.secrets import SecretData, SecretLookup
from extsync.core.runtime.settings import Settings
from extsync.core.spec import GitSourceSpec

log = logging.getLogger("extsync.core.credentials")

SSH_URL_RE = re.compile(r"^(ssh://)?([^/:]*?)@[^@]+$")
HTTPS_URL_RE = re.compile(r"^(https://).*")
HTTP_URL_RE = re.compile(r"^(http://).*")

DEFAULT_SSH_USER = "git"
DEFAULT_HTTP_USER = "x-access-token"

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

# paramiko dropped DSA support; these cover the key types git hosts accept.
_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def is_ssh_url(url: str) -> tuple[bool, str]:
    """Return (is_ssh, user) for ssh:// and scp-like URLs."""
    m = SSH_URL_RE.match(url)
    if m:
        return True, m.group(2)
    if url.startswith("ssh://"):
        return True, urlsplit(url).username or ""
    return False, ""


def is_https_url(url: str) -> bool:
    return bool(HTTPS_URL_RE.match(url))


def is_http_url(url: str) -> bool:
    return bool(HTTP_URL_RE.match(url))


def parse_bool(raw: str) -> bool:
    v = raw.strip()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise CredentialError(f"invalid boolean value for 'insecure': {raw!r}")


@dataclass
class GitCreds:
    ssh_private_key: str = field(default="", repr=False)
    username: str = ""
    password: str = field(default="", repr=False)
    insecure: bool = False


def _text(secret: Mapping[str, bytes], key: str) -> Optional[str]:
    raw = secret.get(key)
    if raw is None:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CredentialError(f"secret key '{key}' is not valid UTF-8") from e


def get_git_creds(url: str, secret: Mapping[str, bytes]) -> GitCreds:
    """Derive credentials for ``url`` from an opaque secret payload."""
    creds = GitCreds()
    if url.startswith("ssh://"):
        key = _text(secret, "sshkey")
        if key is None:
            raise MissingCredential("missing sshkey in the provided secret")
        creds.ssh_private_key = key
    if url.startswith("http://") or url.startswith("https://"):
        creds.username = (_text(secret, "git_user") or "").strip()
        creds.password = (_text(secret, "git_token") or "").strip()
    insecure = _text(secret, "insecure")
    if insecure is not None:
        creds.insecure = parse_bool(insecure)
    return creds


def secret_for(source: GitSourceSpec, secrets: SecretLookup, *, default_namespace: str = "") -> SecretData:
    """Fetch the secret referenced by a git source (empty payload when none is referenced)."""
    if source.secret is None:
        return {}
    return secrets.get(source.secret.namespace or default_namespace, source.secret.name)


def load_private_key(text: str) -> paramiko.PKey:
    for cls in _KEY_CLASSES:
        try:
            return cls.from_private_key(io.StringIO(text))
        except (paramiko.SSHException, ValueError):
            continue
    raise CredentialError("unable to parse ssh private key (supported: ed25519, ecdsa, rsa; unencrypted)")


class GitAuth:
    """Auth handle consumed by the git runner.

    ``apply`` rewrites the URL the transport connects to; ``environment``
    yields the extra environment for one git invocation.
    """

    insecure: bool = False

    def apply(self, url: str) -> str:
        return url

    @contextmanager
    def environment(self, url: str) -> Iterator[Dict[str, str]]:
        yield {"GIT_SSL_NO_VERIFY": "true"} if self.insecure else {}


@dataclass
class NoAuth(GitAuth):
    insecure: bool = False


@dataclass
class HTTPBasicAuth(GitAuth):
    username: str
    password: str = field(repr=False)
    insecure: bool = False

    def apply(self, url: str) -> str:
        parts = urlsplit(url)
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        netloc = f"{quote(self.username, safe='')}:{quote(self.password, safe='')}@{host}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


@dataclass
class SSHPublicKeys(GitAuth):
    user: str
    private_key: str = field(repr=False)
    insecure: bool = False
    known_hosts: Optional[Path] = None
    pkey: paramiko.PKey = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.pkey = load_private_key(self.private_key)

    def host_keys(self) -> Optional[paramiko.HostKeys]:
        if self.insecure or self.known_hosts is None:
            return None
        try:
            return paramiko.HostKeys(str(self.known_hosts))
        except (OSError, paramiko.SSHException):
            log.error("Could not set-up SSH known hosts from %s", self.known_hosts, exc_info=True)
            return None

    def ssh_command(self, key_path: str) -> str:
        cmd = ["ssh", "-i", key_path, "-o", "IdentitiesOnly=yes", "-o", "BatchMode=yes"]
        if self.insecure:
            cmd += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
        else:
            cmd += ["-o", "StrictHostKeyChecking=yes"]
            if self.known_hosts is not None:
                cmd += ["-o", f"UserKnownHostsFile={self.known_hosts}"]
        return " ".join(shlex.quote(c) for c in cmd)

    @contextmanager
    def environment(self, url: str) -> Iterator[Dict[str, str]]:
        keys = self.host_keys()
        if keys is not None:
            host = _ssh_host(url)
            if host and keys.lookup(host) is None:
                log.warning("no known_hosts entry for %s in %s; host key verification will fail", host, self.known_hosts)
        fd, key_path = tempfile.mkstemp(prefix="extsync_sshkey_")
        try:
            # ssh rejects key files without a trailing newline
            key_text = self.private_key if self.private_key.endswith("\n") else self.private_key + "\n"
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(key_text)
            os.chmod(key_path, 0o600)
            yield {"GIT_SSH_COMMAND": self.ssh_command(key_path)}
        finally:
            try:
                os.unlink(key_path)
            except FileNotFoundError:
                pass


def _ssh_host(url: str) -> str:
    if "://" in url:
        return urlsplit(url).hostname or ""
    # scp-like: user@host:path
    rest = url.split("@", 1)[-1]
    return rest.split(":", 1)[0]


def new_auth(url: str, creds: GitCreds, *, settings: Settings) -> GitAuth:
    """Build the auth handle for ``url``."""
    ssh, user = is_ssh_url(url)
    if ssh:
        if not creds.ssh_private_key:
            raise MissingCredential(f"missing sshkey for ssh url {url}")
        return SSHPublicKeys(
            user=user or DEFAULT_SSH_USER,
            private_key=creds.ssh_private_key,
            insecure=creds.insecure,
            known_hosts=settings.known_hosts_path,
        )
    if is_http_url(url) or (is_https_url(url) and creds.password):
        if creds.username or creds.password:
            return HTTPBasicAuth(
                username=creds.username or DEFAULT_HTTP_USER,
                password=creds.password,
                insecure=creds.insecure,
            )
    return NoAuth(insecure=creds.insecure)


def resolve_auth(source: GitSourceSpec, secrets: SecretLookup, *, settings: Settings, default_namespace: str = "") -> GitAuth:
    """secret lookup -> creds -> auth handle, for one git source."""
    secret = secret_for(source, secrets, default_namespace=default_namespace)
    creds = get_git_creds(source.url, secret)
    return new_auth(source.url, creds, settings=settings)
