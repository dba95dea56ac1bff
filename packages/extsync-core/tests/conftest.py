import tempfile
import shutil
from pathlib import Path

import sys

# Allow running tests without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest
from extsync.core.runtime.settings import Settings


@pytest.fixture()
def temp_dir():
    d = Path(tempfile.mkdtemp(prefix="extsync_test_"))
    try:
        yield d
    finally:
        shutil.rmtree(d, ignore_errors=True)


@pytest.fixture()
def settings(temp_dir):
    return Settings(
        output_root=str(temp_dir / "out"),
        staging_root=str(temp_dir / "staging"),
        ssh_data_path=str(temp_dir / "ssh"),
        log_level="INFO",
    )


class FakeRemote:
    """Stands in for revision listing + download: per-extension tokens and file trees."""

    def __init__(self):
        self.revisions = {}
        self.trees = {}
        self.downloads = []
        self.fail_download = None

    def resolve(self, extension, *, secrets, settings):
        return sorted(self.revisions.get(extension.name, []))

    def download(self, extension, staging, *, secrets, settings, http_transport=None):
        self.downloads.append(extension.name)
        if self.fail_download is not None:
            raise self.fail_download
        for rel, text in self.trees.get(extension.name, {}).items():
            p = Path(staging) / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")


@pytest.fixture()
def fake_remote(monkeypatch):
    import extsync.core.extension as extension_mod

    remote = FakeRemote()
    monkeypatch.setattr(extension_mod, "resolve_revisions", remote.resolve)
    monkeypatch.setattr(extension_mod, "download_to", remote.download)
    return remote
