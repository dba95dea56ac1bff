from __future__ import annotations

import sys
import types
from pathlib import Path

import pytest

from extsync.core.exception import MissingCredential
from extsync.core.runtime.secrets import DirectorySecretStore, StaticSecretStore, load_secret_lookup
from extsync.core.runtime.settings import Settings, load_settings


def test_settings_from_env_snapshot():
    s = Settings.from_env(
        {
            "EXTSYNC_OUTPUT_ROOT": "/srv/ext",
            "EXTSYNC_HTTP_TIMEOUT": "5",
            "EXTSYNC_LOG_FORMAT": "json",
            "EXTSYNC_SSH_DATA_PATH": "/etc/ssh-data",
        }
    )
    assert s.output_root == "/srv/ext"
    assert s.http_timeout == 5.0
    assert s.log_format == "json"
    assert s.staging_root is None
    assert s.known_hosts_path == Path("/etc/ssh-data/ssh_known_hosts")
    assert s.override_manifest_path == Path("/srv/ext/.argocd-resource-override-cm.yaml")


def test_load_settings_module_then_overrides(monkeypatch):
    mod = types.ModuleType("extsync_test_settings_mod")
    mod.SETTINGS = {"output_root": "/from/module", "git_binary": "/usr/local/bin/git"}
    monkeypatch.setitem(sys.modules, "extsync_test_settings_mod", mod)

    s = load_settings({"output_root": "/from/override"}, env={"EXTSYNC_SETTINGS_MODULE": "extsync_test_settings_mod"})
    assert s.output_root == "/from/override"
    assert s.git_binary == "/usr/local/bin/git"


def test_static_secret_store():
    store = StaticSecretStore({("argocd", "creds"): {"git_token": "tok"}})
    assert store.get("argocd", "creds") == {"git_token": b"tok"}
    with pytest.raises(MissingCredential) as ei:
        store.get("argocd", "other")
    assert 'secret "argocd/other" not found' in str(ei.value)


def test_directory_secret_store(tmp_path: Path):
    d = tmp_path / "argocd" / "creds"
    d.mkdir(parents=True)
    (d / "sshkey").write_bytes(b"KEY")
    (d / "insecure").write_text("true", encoding="utf-8")
    (d / "..data").mkdir()

    store = DirectorySecretStore(tmp_path)
    assert store.get("argocd", "creds") == {"insecure": b"true", "sshkey": b"KEY"}
    with pytest.raises(MissingCredential):
        store.get("argocd", "missing")


def test_load_secret_lookup_prefers_module(monkeypatch, tmp_path: Path):
    mod = types.ModuleType("extsync_test_secrets_mod")
    mod.SECRETS = StaticSecretStore({("ns", "n"): {"k": "v"}})
    monkeypatch.setitem(sys.modules, "extsync_test_secrets_mod", mod)

    s = Settings(secrets_module="extsync_test_secrets_mod", secrets_dir=str(tmp_path))
    assert load_secret_lookup(s).get("ns", "n") == {"k": b"v"}
    assert isinstance(load_secret_lookup(Settings(secrets_dir=str(tmp_path))), DirectorySecretStore)
    assert isinstance(load_secret_lookup(Settings()), StaticSecretStore)
