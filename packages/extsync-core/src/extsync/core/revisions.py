from __future__ import annotations

import logging
from typing import List

from extsync.core.credentials import resolve_auth
from extsync.core.git import is_commit_sha, is_truncated_commit_sha, resolve_sha
from extsync.core.runtime.secrets import SecretLookup
from extsync.core.runtime.settings import Settings
from extsync.core.spec import ExtensionResourceSpec, ExtensionSourceSpec

log = logging.getLogger("extsync.core.revisions")


def source_token(
    source: ExtensionSourceSpec,
    *,
    secrets: SecretLookup,
    settings: Settings,
    namespace: str = "",
) -> str:
    """Version token for one source: ``url#sha`` for git, the URL for web."""
    if source.git is not None:
        git = source.git
        # SHAs are used verbatim; credentials are only needed to list refs.
        if is_commit_sha(git.revision) or is_truncated_commit_sha(git.revision):
            return f"{git.url}#{git.revision}"
        auth = resolve_auth(git, secrets, settings=settings, default_namespace=namespace)
        sha = resolve_sha(git.url, git.revision, auth=auth, settings=settings)
        return f"{git.url}#{sha}"
    assert source.web is not None
    # Web sources carry no revision; the URL is the whole identity.
    return source.web.url


def resolve_revisions(
    extension: ExtensionResourceSpec,
    *,
    secrets: SecretLookup,
    settings: Settings,
) -> List[str]:
    """Resolve every source of ``extension`` to its version token.

    The tokens are returned sorted, not in declaration order, so that a
    reordered source list compares equal to the stored snapshot. The first
    failing source aborts resolution.
    """
    tokens = [
        source_token(s, secrets=secrets, settings=settings, namespace=extension.namespace)
        for s in extension.spec.sources
    ]
    tokens.sort()
    log.debug("resolved extension=%s revisions=%s", extension.name, tokens)
    return tokens
