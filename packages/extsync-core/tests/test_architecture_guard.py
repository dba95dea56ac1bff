from __future__ import annotations

from pathlib import Path

import pytest

import extsync.core._architecture_guard as guard


def _pkg(tmp_path: Path) -> Path:
    root = tmp_path / "core"
    root.mkdir()
    (root / "exception.py").write_text("class GoodError(RuntimeError):\n    pass\n", encoding="utf-8")
    (root / "spec.py").write_text("class GoodSpec:\n    pass\n", encoding="utf-8")
    return root


def test_clean_layout_has_no_violations(tmp_path: Path):
    assert guard.scan_violations(_pkg(tmp_path)) == []


def test_misplaced_classes_are_reported(tmp_path: Path):
    root = _pkg(tmp_path)
    (root / "sub").mkdir()
    (root / "sub" / "engine.py").write_text(
        "import builtins\n"
        "class Oops(builtins.Exception):\n    pass\n"
        "class StrayError(ValueError):\n    pass\n"
        "class StraySpec:\n    pass\n",
        encoding="utf-8",
    )
    # test modules are not scanned
    (root / "tests").mkdir()
    (root / "tests" / "test_x.py").write_text("class LocalError(Exception):\n    pass\n", encoding="utf-8")

    found = {(v.rule, v.cls) for v in guard.scan_violations(root)}
    assert found == {("exception", "Oops"), ("exception", "StrayError"), ("spec", "StraySpec")}


def test_installed_package_passes():
    assert guard.scan_violations(Path(guard.__file__).resolve().parent) == []


def test_assert_architecture_reports_and_can_be_disabled(tmp_path: Path, monkeypatch):
    root = _pkg(tmp_path)
    (root / "bad.py").write_text("class BadSpec:\n    pass\n", encoding="utf-8")
    fake_module = root / "_architecture_guard.py"
    fake_module.write_text("", encoding="utf-8")
    monkeypatch.setattr(guard, "__file__", str(fake_module))

    monkeypatch.setenv("EXTSYNC_STRICT_ARCH", "1")
    with pytest.raises(RuntimeError) as ei:
        guard.assert_architecture()
    msg = str(ei.value)
    assert msg.startswith("extsync strict architecture check failed:")
    assert "BadSpec" in msg

    monkeypatch.setenv("EXTSYNC_STRICT_ARCH", "0")
    guard.assert_architecture()
