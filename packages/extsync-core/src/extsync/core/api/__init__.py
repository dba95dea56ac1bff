"""Public, stable API surface for extsync.

If you're embedding the synchronization engine (a controller, a job runner,
a test harness), import from **`extsync.core.api`**.

Everything outside this package is considered internal and may change without
notice, even in minor releases.
"""

from __future__ import annotations

# Engine
from extsync.core.extension import ExtensionContext, ExtensionStatus, ProcessResult, extension_status
# Exceptions
from extsync.core.exception import (
    AggregationFailure,
    CredentialError,
    ExtSyncError,
    FetchFailure,
    MissingCredential,
    OwnershipConflict,
    PersistenceFailure,
    SpecError,
    UnresolvedRevision,
)
# Fetch primitive
from extsync.core.getter import get, register_getter
# Aggregation sinks
from extsync.core.overrides import FileOverrideSink, MemoryOverrideSink, OverrideSink
# Reconciliation boundary
from extsync.core.reconcile import LifecycleState, ReconcileResult, load_extension_resource, reconcile
# Secrets + settings
from extsync.core.runtime.secrets import DirectorySecretStore, SecretLookup, StaticSecretStore, load_secret_lookup
from extsync.core.runtime.settings import Settings, load_settings
# Declared intent + persisted documents (Pydantic models)
from extsync.core.spec import (
    ExtensionResourceSpec,
    ExtensionSourceSpec,
    ExtensionSpec,
    GitSourceSpec,
    SourcesSnapshot,
    WebSourceSpec,
)

__all__ = [
    # engine
    "ExtensionContext",
    "ProcessResult",
    "ExtensionStatus",
    "extension_status",
    # reconcile
    "reconcile",
    "ReconcileResult",
    "LifecycleState",
    "load_extension_resource",
    # settings
    "Settings",
    "load_settings",
    # secrets
    "SecretLookup",
    "StaticSecretStore",
    "DirectorySecretStore",
    "load_secret_lookup",
    # spec
    "ExtensionResourceSpec",
    "ExtensionSpec",
    "ExtensionSourceSpec",
    "GitSourceSpec",
    "WebSourceSpec",
    "SourcesSnapshot",
    # aggregation
    "OverrideSink",
    "FileOverrideSink",
    "MemoryOverrideSink",
    # fetch
    "get",
    "register_getter",
    # exceptions
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
