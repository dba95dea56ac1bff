"""Centralized customized exceptions for extsync.

All customized exceptions live in this module (enforced at import time by
``extsync.core._architecture_guard``). Internal code should prefer explicit
imports:

    from extsync.core.exception import OwnershipConflict

Every error raised by the synchronization engine derives from ``ExtSyncError``
so the reconciliation layer can report it as-is in the ``Ready`` condition.
"""

from __future__ import annotations

__all__ = [
    "ExtSyncError",
    "SpecError",
    "UnresolvedRevision",
    "CredentialError",
    "MissingCredential",
    "FetchFailure",
    "OwnershipConflict",
    "PersistenceFailure",
    "AggregationFailure",
]


class ExtSyncError(RuntimeError):
    """Base error for extension synchronization failures."""


class SpecError(ValueError):
    """Raised when a declared extension resource is invalid (schema or semantic)."""


class UnresolvedRevision(ExtSyncError):
    """Raised when a git revision matches no remote reference."""

    def __init__(self, revision: str, *, url: str | None = None):
        msg = f"Unable to resolve '{revision}' to a commit SHA"
        if url:
            msg = f"{msg} (url={url})"
        super().__init__(msg)
        self.revision = revision
        self.url = url


class CredentialError(ExtSyncError):
    """Raised when credentials for a source cannot be derived from its secret."""


class MissingCredential(CredentialError):
    """Raised when a secret (or a field required by the URL scheme) is absent."""


class FetchFailure(ExtSyncError):
    """Raised when a transport-level download or listing fails."""


class OwnershipConflict(ExtSyncError):
    """Raised when a path is owned by a different extension than the caller."""

    def __init__(self, path: str, *, owner: str, requested_by: str, action: str = "place"):
        if action == "delete":
            msg = f'cannot delete file "{path}" since it is owned by "{owner}"'
        else:
            msg = f'file "{path}" is already owned by "{owner}"'
        super().__init__(msg)
        self.path = path
        self.owner = owner
        self.requested_by = requested_by
        self.action = action


class PersistenceFailure(ExtSyncError):
    """Raised when the file tracker or a snapshot cannot be read or written."""


class AggregationFailure(ExtSyncError):
    """Raised when the derived resource-override artifact cannot be rebuilt or pushed."""
