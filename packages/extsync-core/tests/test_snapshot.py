from __future__ import annotations

import json
from pathlib import Path

import pytest

from extsync.core.snapshot import delete_snapshot, load_snapshot, save_snapshot, should_download, snapshot_path
from extsync.core.spec import SourcesSnapshot

A = "https://host/a.git#a67038ae2e9cb9b9b16423702f98b41e36601001"
B = "https://host/b.git#b67038ae2e9cb9b9b16423702f98b41e36601002"
B2 = "https://host/b.git#c67038ae2e9cb9b9b16423702f98b41e36601003"
WEB = "https://cdn.example.com/ext.tar.gz"


def test_never_synced():
    assert should_download(SourcesSnapshot(), [A]) == "Sources has not been downloaded yet"
    assert should_download(SourcesSnapshot(files=["/out/x"]), []) == "Sources has not been downloaded yet"


def test_source_count_changed():
    assert should_download(SourcesSnapshot(revisions=[A]), [A, B]) == "Sources number has changed from 1 to 2"


def test_first_differing_source():
    reason = should_download(SourcesSnapshot(revisions=[A, B]), [A, B2])
    assert reason == f"Source #1 has changed from {B} to {B2}"


@pytest.mark.parametrize(
    "stored,current",
    [
        ([A], [A]),
        ([A, B, WEB], [A, B, WEB]),
        ([A], [B]),
        ([A, B], [A]),
        ([A, B], [B, A]),
    ],
)
def test_up_to_date_iff_equal(stored, current):
    assert (should_download(SourcesSnapshot(revisions=stored), current) == "") == (stored == current)


def test_snapshot_path(tmp_path: Path):
    assert snapshot_path(tmp_path, "my-ext") == tmp_path / ".my-ext.snapshot"


def test_save_and_load(tmp_path: Path):
    p = snapshot_path(tmp_path / "out", "e1")
    snap = SourcesSnapshot(revisions=[A], files=[str(tmp_path / "out" / "resources" / "x")])
    save_snapshot(p, snap)

    text = p.read_text(encoding="utf-8")
    # indented, human-diffable
    assert "\n  " in text
    assert json.loads(text) == {"revisions": [A], "files": snap.files}
    assert load_snapshot(p) == snap


def test_missing_or_corrupt_snapshot_is_never_synced(tmp_path: Path):
    assert load_snapshot(tmp_path / ".nope.snapshot") == SourcesSnapshot()

    p = tmp_path / ".bad.snapshot"
    p.write_text("{not json", encoding="utf-8")
    assert load_snapshot(p) == SourcesSnapshot()

    p.write_text('{"revisions": "oops"}', encoding="utf-8")
    assert load_snapshot(p) == SourcesSnapshot()


def test_delete_snapshot_is_idempotent(tmp_path: Path):
    p = snapshot_path(tmp_path, "e1")
    save_snapshot(p, SourcesSnapshot(revisions=[A]))
    delete_snapshot(p)
    assert not p.exists()
    delete_snapshot(p)
