"""Secret lookup used to derive transport credentials.

Secrets are opaque key/value byte payloads addressed by namespace + name, the
way the orchestration API exposes them. The engine only reads them.

Config:
- EXTSYNC_SECRETS_DIR: mounted secrets, one directory per secret
  (``<root>/<namespace>/<name>/<key>``, file content is the value)
- EXTSYNC_SECRETS_MODULE: import module that exposes ``SECRETS`` (any object with
  ``get(namespace, name) -> dict[str, bytes]``)

Behavior:
- a secret that does not exist raises MissingCredential
- absence of an individual key is not an error here; the credential resolver
  decides which keys a URL scheme requires
"""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import Dict, Mapping, Protocol

from extsync.core.exception import MissingCredential
from extsync.core.runtime.settings import Settings

SecretData = Dict[str, bytes]


class SecretLookup(Protocol):
    def get(self, namespace: str, name: str) -> SecretData:
        ...


def _as_bytes(v) -> bytes:
    if isinstance(v, bytes):
        return v
    return str(v).encode("utf-8")


class StaticSecretStore:
    """In-memory secrets keyed by (namespace, name)."""

    def __init__(self, secrets: Mapping[tuple[str, str], Mapping[str, bytes | str]] | None = None):
        self._items: dict[tuple[str, str], SecretData] = {}
        for key, data in (secrets or {}).items():
            self.put(key[0], key[1], data)

    def put(self, namespace: str, name: str, data: Mapping[str, bytes | str]) -> None:
        self._items[(namespace, name)] = {str(k): _as_bytes(v) for k, v in data.items()}

    def get(self, namespace: str, name: str) -> SecretData:
        try:
            return dict(self._items[(namespace, name)])
        except KeyError:
            raise MissingCredential(f'secret "{namespace}/{name}" not found') from None


class DirectorySecretStore:
    """Secrets mounted as files: <root>/<namespace>/<name>/<key>."""

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser()

    def get(self, namespace: str, name: str) -> SecretData:
        p = self.root / namespace / name
        if not p.is_dir():
            raise MissingCredential(f'secret "{namespace}/{name}" not found under {self.root}')
        out: SecretData = {}
        for fp in sorted(p.iterdir()):
            # kubelet projects keys through ..data symlinks; skip the bookkeeping entries
            if fp.name.startswith(".."):
                continue
            if fp.is_file():
                out[fp.name] = fp.read_bytes()
        return out


def _load_from_module(mod_name: str) -> SecretLookup:
    m = importlib.import_module(mod_name)
    lookup = getattr(m, "SECRETS", None)
    if lookup is None or not callable(getattr(lookup, "get", None)):
        raise TypeError(f"{mod_name} must expose SECRETS with get(namespace, name) -> dict[str, bytes]")
    return lookup


def load_secret_lookup(settings: Settings) -> SecretLookup:
    """Pick the configured secret lookup (module first, then directory, else empty)."""
    if settings.secrets_module:
        return _load_from_module(settings.secrets_module)
    if settings.secrets_dir:
        return DirectorySecretStore(settings.secrets_dir)
    return StaticSecretStore()
