from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import pytest

import extsync.core.extension as extension_mod
from extsync.core.extension import ExtensionContext
from extsync.core.overrides import MemoryOverrideSink
from extsync.core.runtime.secrets import StaticSecretStore
from extsync.core.snapshot import load_snapshot, snapshot_path
from extsync.core.spec import ExtensionResourceSpec

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")

HEALTH = Path("resources") / "argoproj.io" / "Rollout" / "health.lua"


def _git(*args: str, cwd: Path) -> str:
    env = {
        **os.environ,
        "GIT_AUTHOR_NAME": "t",
        "GIT_AUTHOR_EMAIL": "t@example.com",
        "GIT_COMMITTER_NAME": "t",
        "GIT_COMMITTER_EMAIL": "t@example.com",
    }
    res = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args], cwd=str(cwd), env=env, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


def _commit(repo: Path, text: str) -> str:
    target = repo / HEALTH
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    _git("add", ".", cwd=repo)
    _git("commit", "--quiet", "-m", text, cwd=repo)
    return _git("rev-parse", "HEAD", cwd=repo)


def test_process_follows_remote_head(settings, tmp_path: Path, monkeypatch):
    repo = tmp_path / "repo"
    repo.mkdir()
    _git("init", "--quiet", cwd=repo)
    first = _commit(repo, "v1")

    downloads = []
    real_download = extension_mod.download_to

    def _counting_download(*args, **kwargs):
        downloads.append(args[0].name)
        return real_download(*args, **kwargs)

    monkeypatch.setattr(extension_mod, "download_to", _counting_download)

    url = repo.as_uri()
    ext = ExtensionResourceSpec.model_validate(
        {
            "metadata": {"name": "e1", "namespace": "argocd"},
            "spec": {"sources": [{"git": {"url": url, "revision": "HEAD"}}]},
        }
    )
    ctx = ExtensionContext(ext, settings=settings, secrets=StaticSecretStore(), sink=MemoryOverrideSink())
    root = Path(settings.output_root).resolve()

    res = ctx.process()
    assert res.changed
    assert res.revisions == [f"{url}#{first}"]
    assert (root / HEALTH).read_text(encoding="utf-8") == "v1"
    assert load_snapshot(snapshot_path(root, "e1")).revisions == [f"{url}#{first}"]

    res = ctx.process()
    assert not res.changed
    assert downloads == ["e1"]

    second = _commit(repo, "v2")
    res = ctx.process()
    assert res.changed
    assert res.reason == f"Source #0 has changed from {url}#{first} to {url}#{second}"
    assert downloads == ["e1", "e1"]
    assert (root / HEALTH).read_text(encoding="utf-8") == "v2"
    assert load_snapshot(snapshot_path(root, "e1")).revisions == [f"{url}#{second}"]
