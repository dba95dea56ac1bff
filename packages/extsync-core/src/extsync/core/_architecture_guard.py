"""Import-time layout check for extsync.core.

Two rules keep the error taxonomy and the declared-intent models in one place each:

1) classes deriving from an exception type live only in ``extsync/core/exception.py``
2) classes named ``*Spec`` live only in ``extsync/core/spec.py``

A violation raises RuntimeError listing every offending class and file.
Set EXTSYNC_STRICT_ARCH=0 to skip the check.
"""

from __future__ import annotations

import ast
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List

_SKIP_PARTS = {"__pycache__", "tests", "test", "build", "dist", ".git", ".venv", "venv"}

RULE_EXCEPTIONS = "exception"
RULE_SPECS = "spec"

_FIX = {
    RULE_EXCEPTIONS: "move these exception classes into extsync/core/exception.py",
    RULE_SPECS: "move these Spec classes into extsync/core/spec.py",
}


@dataclass(frozen=True)
class Violation:
    rule: str
    cls: str
    path: Path


def _sources(package_root: Path) -> Iterator[Path]:
    for path in sorted(package_root.rglob("*.py")):
        if _SKIP_PARTS & set(path.relative_to(package_root).parts):
            continue
        yield path


def _base_name(node: ast.expr) -> str:
    if isinstance(node, ast.Subscript):
        node = node.value
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Name):
        return node.id
    return ""


def _derives_from_exception(cls: ast.ClassDef) -> bool:
    for base in cls.bases:
        name = _base_name(base)
        if name in ("BaseException", "Exception") or name.endswith(("Error", "Exception")):
            return True
    return False


def scan_violations(package_root: Path) -> List[Violation]:
    """Return every class that breaks one of the two layout rules under ``package_root``."""
    allowed = {
        RULE_EXCEPTIONS: (package_root / "exception.py").resolve(),
        RULE_SPECS: (package_root / "spec.py").resolve(),
    }
    found: List[Violation] = []
    for path in _sources(package_root):
        try:
            tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        except (OSError, UnicodeDecodeError, SyntaxError) as e:
            raise RuntimeError(f"[extsync strict-arch] Cannot parse source file: {path}") from e
        here = path.resolve()
        for node in ast.walk(tree):
            if not isinstance(node, ast.ClassDef):
                continue
            if here != allowed[RULE_EXCEPTIONS] and _derives_from_exception(node):
                found.append(Violation(RULE_EXCEPTIONS, node.name, path))
            if here != allowed[RULE_SPECS] and node.name.endswith("Spec"):
                found.append(Violation(RULE_SPECS, node.name, path))
    return found


def assert_architecture() -> None:
    if os.getenv("EXTSYNC_STRICT_ARCH", "1") == "0":
        return
    violations = scan_violations(Path(__file__).resolve().parent)
    if not violations:
        return

    lines = ["extsync strict architecture check failed:"]
    for rule in (RULE_EXCEPTIONS, RULE_SPECS):
        hits = [v for v in violations if v.rule == rule]
        if not hits:
            continue
        lines.append("")
        lines.append(f"rule '{rule}':")
        lines.extend(f"  - {v.cls} defined in {v.path}" for v in hits)
        lines.append(f"Fix: {_FIX[rule]}.")
    raise RuntimeError("\n".join(lines))
