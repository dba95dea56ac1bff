from __future__ import annotations

import os
from importlib import import_module
from pathlib import Path

from pydantic import BaseModel

KNOWN_HOSTS_FILE_NAME = "ssh_known_hosts"
OVERRIDE_MANIFEST_FILE_NAME = ".argocd-resource-override-cm.yaml"


class Settings(BaseModel):
    # Defaults are static. Use load_settings(env=...) to read from an env snapshot.
    output_root: str = "/tmp/extensions"
    # Parent directory for per-call staging areas (None -> system temp dir).
    staging_root: str | None = None

    # Secret lookup: mounted secrets directory or a module exposing SECRETS
    secrets_dir: str | None = None
    secrets_module: str | None = None

    # Transports
    ssh_data_path: str = "/app/config/ssh"
    git_binary: str = "git"
    http_timeout: float = 30.0

    # Where the derived resource-override ConfigMap manifest is written
    override_manifest: str | None = None

    log_level: str = "INFO"
    # - log_format: "text" (default) or "json". When json, extsync logs emit a single JSON
    #   object per line, suitable for log aggregation.
    log_format: str = "text"

    @property
    def known_hosts_path(self) -> Path:
        return Path(self.ssh_data_path) / KNOWN_HOSTS_FILE_NAME

    @property
    def override_manifest_path(self) -> Path:
        if self.override_manifest:
            return Path(self.override_manifest)
        return Path(self.output_root) / OVERRIDE_MANIFEST_FILE_NAME

    @classmethod
    def from_env(cls, env: dict[str, str], overrides: dict | None = None) -> "Settings":
        """Build Settings from an explicit env snapshot (does not read os.environ)."""
        def g(key: str, default: str | None = None) -> str | None:
            return env.get(key, default)  # type: ignore[return-value]

        data = {
            "output_root": g("EXTSYNC_OUTPUT_ROOT", "/tmp/extensions"),
            "staging_root": g("EXTSYNC_STAGING_ROOT") or None,
            "secrets_dir": g("EXTSYNC_SECRETS_DIR") or None,
            "secrets_module": g("EXTSYNC_SECRETS_MODULE") or None,
            "ssh_data_path": g("EXTSYNC_SSH_DATA_PATH", "/app/config/ssh"),
            "git_binary": g("EXTSYNC_GIT_BINARY", "git"),
            "http_timeout": float(g("EXTSYNC_HTTP_TIMEOUT", "30") or "30"),
            "override_manifest": g("EXTSYNC_OVERRIDE_MANIFEST") or None,
            "log_level": g("EXTSYNC_LOG_LEVEL", "INFO"),
            "log_format": g("EXTSYNC_LOG_FORMAT", "text"),
        }
        if overrides:
            data.update(overrides)
        return cls(**data)


def load_settings(overrides: dict | None = None, *, env: dict[str, str] | None = None) -> Settings:
    """Load settings from (1) env snapshot, (2) optional settings module, (3) explicit overrides.

    If env is not provided, we build a snapshot from os.environ.
    """
    env2 = {k: str(v) for k, v in os.environ.items()} if env is None else env
    s = Settings.from_env(env2)
    mod = env2.get("EXTSYNC_SETTINGS_MODULE")
    if mod:
        m = import_module(mod)
        data = getattr(m, "SETTINGS", {})
        if not isinstance(data, dict):
            raise TypeError("EXTSYNC_SETTINGS_MODULE must expose SETTINGS: dict")
        s = s.model_copy(update=data)
    if overrides:
        s = s.model_copy(update=overrides)
    return s
