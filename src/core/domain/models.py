"""Domain models (Pydantic v2).

Why Pydantic in the domain:
- Strict validation and self-documenting fields (Field) without coupling
  the Core to I/O libraries.
- The same models serialize to the REST backend, the bootstrap envelope
  and the JSON exporter.

Note:
- These models describe *what* the information is, not *how* it is fetched.
"""

from __future__ import annotations

import base64
import re
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

ZERO_OBJECT_ID = "0" * 40
UNKNOWN_BRANCH = "unknown"

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{40}$")


def strip_heads_prefix(ref: str) -> str:
    return ref[len("refs/heads/") :] if ref.startswith("refs/heads/") else ref


class HostContext(BaseModel):
    """Where the host lives. Derived once per session."""

    model_config = ConfigDict(frozen=True)

    origin_base_uri: str = Field(
        ...,
        min_length=1,
        description="Host origin, including a `/tfs` virtual directory on-premises.",
    )
    host_kind: str | None = Field(
        default=None,
        description="Host type reported by the SDK (organization, collection, ...).",
    )
    collection_uri: str = Field(
        ...,
        min_length=1,
        description="Collection URI used as the REST base; always ends with '/'.",
    )

    @field_validator("collection_uri")
    @classmethod
    def _single_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") + "/"


class ResolvedIdentity(BaseModel):
    """Project/repository/branch identifiers the provisioning run targets.

    Frozen: the resolver builds it once; later sources (bootstrap payloads)
    produce a new instance through `merged_with`.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str | None = None
    project_name: str | None = None
    repository_id: str | None = None
    repository_name: str | None = None
    source_branch: str = UNKNOWN_BRANCH
    target_branch: str = "main"

    def merged_with(self, **values: str | None) -> "ResolvedIdentity":
        """Return a copy where every non-empty value overwrites the current one."""

        update = {k: v for k, v in values.items() if isinstance(v, str) and v.strip()}
        if not update:
            return self
        return self.model_copy(update=update)


class CredentialOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable-failure"
    TERMINAL_FAILURE = "terminal-failure"


class Credential(BaseModel):
    """Opaque access token plus the outcome of the acquisition that produced it."""

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., min_length=1, repr=False)
    outcome: CredentialOutcome = CredentialOutcome.SUCCESS
    attempts: int = Field(default=1, ge=1)

    @property
    def is_jwt(self) -> bool:
        return len(self.token.split(".")) == 3

    def authorization_header(self) -> str:
        if self.is_jwt:
            return f"Bearer {self.token}"
        encoded = base64.b64encode(f":{self.token}".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"


class BranchTip(BaseModel):
    branch_name: str = Field(..., min_length=1)
    object_id: str = Field(
        default=ZERO_OBJECT_ID,
        description="40-hex commit id; the all-zero id means the branch does not exist yet.",
    )

    @field_validator("object_id")
    @classmethod
    def _validate_object_id(cls, value: str) -> str:
        if not _OBJECT_ID_RE.match(value):
            raise ValueError(f"not a 40-hex object id: {value!r}")
        return value.lower()

    @property
    def is_new_branch(self) -> bool:
        return self.object_id == ZERO_OBJECT_ID

    @property
    def ref_name(self) -> str:
        return f"refs/heads/{self.branch_name}"


class RepositoryRef(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    default_branch: str | None = Field(default=None, alias="defaultBranch")
    url: str | None = None


class PipelineRepository(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str | None = None
    type: str = "azureReposGit"
    default_branch: str | None = Field(default=None, alias="defaultBranch")


class PipelineConfiguration(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = "yaml"
    path: str
    repository: PipelineRepository


class PipelineDefinition(BaseModel):
    """CI definition binding a repository, branch and build-manifest path."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int | None = None
    name: str = Field(..., min_length=1)
    folder: str | None = None
    revision: int | None = None
    configuration: PipelineConfiguration | None = None


class PipelineTemplateValues(BaseModel):
    """Values embedded in the generated pipeline YAML."""

    model_config = ConfigDict(populate_by_name=True)

    pool: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1)
    environment: str = Field(..., min_length=1)
    dockerfile_dir: str = Field(..., min_length=1, alias="dockerfileDir")
    repository_address: str = Field(..., min_length=1, alias="repositoryAddress")
    container_registry_service: str = Field(..., min_length=1, alias="containerRegistryService")
    komodo_server: str = Field(
        ...,
        min_length=1,
        alias="komodoServer",
        description="Target deployment server.",
    )


class FormOptions(BaseModel):
    """Choices offered to the user before provisioning."""

    pools: list[str] = Field(default_factory=list)
    registries: list[str] = Field(default_factory=list)
    dockerfile_dirs: list[str] = Field(default_factory=list)
    environment: str | None = None
    komodo_server: str | None = None
    service: str | None = None
    warnings: list[str] = Field(default_factory=list)


class ProvisionResult(BaseModel):
    repository: RepositoryRef
    branch: str
    branch_created: bool = False
    pushed: bool = False
    commit_id: str | None = None
    default_branch_updated: bool = False
    pipeline: PipelineDefinition
    pipeline_action: Literal["created", "updated", "unchanged"]
    drift_fields: list[str] = Field(default_factory=list)
    write_calls: int = Field(default=0, ge=0)

    def summary(self) -> str:
        return (
            f"Repository {self.repository.name} is ready with pipeline template on {self.branch}."
        )
