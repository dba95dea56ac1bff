"""extsync core package.

Public entrypoints:
- extsync.core.api: stable API surface for integrations
- extsync.core.reconcile.reconcile: run one reconciliation pass programmatically

Internal modules may change without notice.
"""

from __future__ import annotations

# Strict architecture enforcement (default ON; set EXTSYNC_STRICT_ARCH=0 to disable).
from extsync.core._architecture_guard import assert_architecture as _assert_architecture

_assert_architecture()

# Ensure built-in getters are registered on import.
from extsync.core import getter as _getter  # noqa: F401

from extsync.core.reconcile import reconcile

__all__ = ["reconcile"]
