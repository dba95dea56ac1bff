from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
import yaml
from pydantic import ValidationError

from extsync.core.exception import ExtSyncError, SpecError
from extsync.core.extension import ExtensionContext, ProcessResult
from extsync.core.overrides import OverrideSink
from extsync.core.runtime.secrets import SecretLookup
from extsync.core.runtime.settings import Settings
from extsync.core.spec import CONDITION_READY, ConditionSpec, ExtensionResourceSpec

log = logging.getLogger("extsync.core.reconcile")

FINALIZER_NAME = "extensions-finalizer.argocd.argoproj.io"


class LifecycleState(str, enum.Enum):
    ACTIVE = "Active"
    PENDING_DELETION = "PendingDeletion"
    REMOVED = "Removed"


def lifecycle_state(resource: ExtensionResourceSpec) -> LifecycleState:
    """Mark-then-finalize: a deleted resource stays pending while our finalizer is on it."""
    if resource.metadata.deletion_timestamp is None:
        return LifecycleState.ACTIVE
    if FINALIZER_NAME in resource.metadata.finalizers:
        return LifecycleState.PENDING_DELETION
    return LifecycleState.REMOVED


@dataclass
class ReconcileResult:
    resource: ExtensionResourceSpec
    state: LifecycleState
    error: Optional[ExtSyncError] = None
    outcome: Optional[ProcessResult] = None

    @property
    def ready(self) -> bool:
        for c in self.resource.status.conditions:
            if c.type == CONDITION_READY:
                return c.status == "True"
        return False


def load_extension_resource(path: str | Path) -> ExtensionResourceSpec:
    """Load one declared extension resource from a YAML manifest."""
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    try:
        return ExtensionResourceSpec.model_validate(raw)
    except ValidationError as e:
        raise SpecError(str(e)) from e


def reconcile(
    resource: ExtensionResourceSpec,
    *,
    settings: Settings,
    secrets: SecretLookup,
    sink: OverrideSink,
    http_transport: Optional[httpx.BaseTransport] = None,
) -> ReconcileResult:
    """Drive one reconciliation pass for ``resource``.

    Active resources get the finalizer and are processed; the single Ready
    condition reports the outcome. Resources pending deletion are cleaned up
    and lose the finalizer only once the cleanup succeeded, so a repeated
    deletion signal simply retries. The input resource is never mutated.
    """
    ext = resource.model_copy(deep=True)
    state = lifecycle_state(ext)
    ctx = ExtensionContext(ext, settings=settings, secrets=secrets, sink=sink, http_transport=http_transport)

    if state is LifecycleState.REMOVED:
        return ReconcileResult(resource=ext, state=state)

    if state is LifecycleState.PENDING_DELETION:
        log.info("processing deletion... extension=%s", ext.name)
        try:
            outcome = ctx.process_deletion()
        except ExtSyncError as e:
            log.error("failed to process deletion extension=%s: %s", ext.name, e)
            return ReconcileResult(resource=ext, state=state, error=e)
        ext.metadata.finalizers = [f for f in ext.metadata.finalizers if f != FINALIZER_NAME]
        log.info("removed finalizer extension=%s", ext.name)
        return ReconcileResult(resource=ext, state=LifecycleState.REMOVED, outcome=outcome)

    if FINALIZER_NAME not in ext.metadata.finalizers:
        ext.metadata.finalizers.append(FINALIZER_NAME)
        log.info("added finalizer extension=%s", ext.name)

    ready = ConditionSpec(type=CONDITION_READY)
    error: Optional[ExtSyncError] = None
    outcome: Optional[ProcessResult] = None
    log.info("processing... extension=%s", ext.name)
    try:
        outcome = ctx.process()
    except ExtSyncError as e:
        error = e
        ready.status = "False"
        ready.message = str(e)
        log.error("failed to process extension=%s: %s", ext.name, e)
    else:
        n = len(resource.spec.sources)
        ready.status = "True"
        ready.message = f"Successfully processed {n} extension sources"
        log.info("successfully processed extension=%s sourceCount=%d", ext.name, n)
    ext.status.conditions = [ready]
    return ReconcileResult(resource=ext, state=state, error=error, outcome=outcome)
