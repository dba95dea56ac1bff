from __future__ import annotations

import extsync.core.api as api


def test_public_api___all___is_frozen():
    """Contract test: keep `extsync.core.api.__all__` stable.

    If you *intentionally* change the public API, update this test.
    """
    expected = [
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

    assert list(api.__all__) == expected


def test_public_api_exports_exist():
    for name in api.__all__:
        assert hasattr(api, name), f"Missing export: {name}"
