from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict

# ---------------------------------------------------------------------------
# Declared intent (ArgoCDExtension custom resource)
# ---------------------------------------------------------------------------

DEFAULT_API_VERSION = "argoproj.io/v1alpha1"
DEFAULT_KIND = "ArgoCDExtension"
CONDITION_READY = "Ready"

ConditionStatus = Literal["True", "False", "Unknown"]


class NamespacedNameSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    namespace: str = ""
    name: str


class GitSourceSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    url: str
    revision: str = ""
    secret: Optional[NamespacedNameSpec] = Field(default=None, alias="secretRef")


class WebSourceSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str


class ExtensionSourceSpec(BaseModel):
    """One entry of spec.sources: exactly one of git/web."""

    model_config = ConfigDict(extra="forbid")

    git: Optional[GitSourceSpec] = None
    web: Optional[WebSourceSpec] = None

    @model_validator(mode="after")
    def _exactly_one_variant(self) -> "ExtensionSourceSpec":
        if (self.git is None) == (self.web is None):
            raise ValueError("exactly one of 'git' or 'web' must be set on an extension source")
        return self

    @property
    def url(self) -> str:
        return self.git.url if self.git is not None else self.web.url  # type: ignore[union-attr]


class ExtensionSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    sources: List[ExtensionSourceSpec] = Field(default_factory=list)
    # Directory inside git repositories that is placed under resources/.
    base_directory: str = Field(default="", alias="baseDirectory")


class ExtensionMetaSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    namespace: str = ""
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[str] = Field(default=None, alias="deletionTimestamp")


class ConditionSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = CONDITION_READY
    status: ConditionStatus = "Unknown"
    message: str = ""


class ExtensionStatusSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conditions: List[ConditionSpec] = Field(default_factory=list)


class ExtensionResourceSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    api_version: str = Field(default=DEFAULT_API_VERSION, alias="apiVersion")
    kind: str = DEFAULT_KIND
    metadata: ExtensionMetaSpec
    spec: ExtensionSpec = Field(default_factory=ExtensionSpec)
    status: ExtensionStatusSpec = Field(default_factory=ExtensionStatusSpec)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


# ---------------------------------------------------------------------------
# Persisted documents (under the shared output root)
# ---------------------------------------------------------------------------


class SourcesSnapshot(BaseModel):
    """Last successfully applied (revisions, files) pair of one extension.

    An empty ``revisions`` list means "never synced".
    """

    model_config = ConfigDict(extra="ignore")

    revisions: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)


class TrackedFile(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    owner: str
    config_map_key: str = Field(default="", alias="configMapKey")


class FileTrackerDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    files: Dict[str, TrackedFile] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Git remote listing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemoteRef:
    """One advertised remote reference.

    Hash references carry ``hash``; symbolic references (HEAD) carry ``target``.
    """

    name: str
    hash: Optional[str] = None
    target: Optional[str] = None

    @property
    def is_symbolic(self) -> bool:
        return self.target is not None

    @property
    def short_name(self) -> str:
        for prefix in ("refs/heads/", "refs/tags/", "refs/remotes/", "refs/"):
            if self.name.startswith(prefix):
                return self.name[len(prefix):]
        return self.name


__all__ = [
    # declared intent
    "NamespacedNameSpec",
    "GitSourceSpec",
    "WebSourceSpec",
    "ExtensionSourceSpec",
    "ExtensionSpec",
    "ExtensionMetaSpec",
    "ConditionSpec",
    "ConditionStatus",
    "ExtensionStatusSpec",
    "ExtensionResourceSpec",
    "CONDITION_READY",
    # persisted documents
    "SourcesSnapshot",
    "TrackedFile",
    "FileTrackerDocument",
    # git
    "RemoteRef",
]
