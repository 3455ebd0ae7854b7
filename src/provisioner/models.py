"""Pydantic models for desired resources, IAM grants and run results.

Resource specs form a tagged union keyed on ``kind``: each kind carries
its own parameters, and the provider dispatches existence checks and
create calls on that tag. All specs are frozen once built.

Results are plain dataclasses: they only live for one run and are never
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

# IAP's TCP forwarding source range
IAP_SOURCE_RANGE = "35.235.240.0/20"

VALID_ROLE_PREFIX = "roles/"
VALID_MEMBER_PREFIXES = ("serviceAccount:", "user:", "group:", "domain:")


class ResourceKind(str, Enum):
    """Resource kinds the provisioner knows how to create."""

    SERVICES = "services"
    NETWORK = "network"
    FIREWALL_RULE = "firewall-rule"
    SERVICE_ACCOUNT = "service-account"
    KMS_KEYRING = "kms-keyring"
    KMS_KEY = "kms-key"
    BUCKET = "bucket"
    ARTIFACT_REPOSITORY = "artifact-repository"


class BindingTarget(str, Enum):
    """Resources that IAM grants attach to."""

    PROJECT = "project"
    SERVICE_ACCOUNT = "service-account"
    KMS_KEY = "kms-key"
    BUCKET = "bucket"
    ARTIFACT_REPOSITORY = "artifact-repository"


# =============================================================================
# Resource specs
# =============================================================================


class BaseResourceSpec(BaseModel):
    """Fields shared by every resource kind."""

    model_config = {"extra": "forbid", "frozen": True, "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    depends_on: tuple[str, ...] = Field(default=(), alias="dependsOn")

    @property
    def key(self) -> str:
        """Stable identifier used for ordering and reporting."""
        return f"{self.kind}/{self.name}"  # type: ignore[attr-defined]


class ServicesSpec(BaseResourceSpec):
    """A set of APIs that must be enabled on the project.

    Counts as present only when every listed service is enabled.
    """

    kind: Literal["services"] = "services"
    services: tuple[str, ...] = Field(min_length=1)


class NetworkSpec(BaseResourceSpec):
    """VPC network."""

    kind: Literal["network"] = "network"
    subnet_mode: str = Field("auto", alias="subnetMode")
    bgp_routing_mode: str = Field("regional", alias="bgpRoutingMode")

    @field_validator("subnet_mode")
    @classmethod
    def validate_subnet_mode(cls, v: str) -> str:
        valid = {"auto", "custom", "legacy"}
        if v not in valid:
            raise ValueError(f"subnet_mode must be one of {valid}")
        return v


class FirewallRuleSpec(BaseResourceSpec):
    """Ingress firewall rule on a network."""

    kind: Literal["firewall-rule"] = "firewall-rule"
    network: str
    allow: tuple[str, ...] = Field(min_length=1)
    source_ranges: tuple[str, ...] = Field(default=(IAP_SOURCE_RANGE,), alias="sourceRanges")
    description: str = ""


class ServiceAccountSpec(BaseResourceSpec):
    """User-managed service account; ``name`` is the full email."""

    kind: Literal["service-account"] = "service-account"
    account_id: str = Field(alias="accountId")
    display_name: str = Field("", alias="displayName")
    description: str = ""


class KmsKeyRingSpec(BaseResourceSpec):
    kind: Literal["kms-keyring"] = "kms-keyring"
    location: str


class KmsKeySpec(BaseResourceSpec):
    kind: Literal["kms-key"] = "kms-key"
    keyring: str
    location: str
    purpose: str = "encryption"


class BucketSpec(BaseResourceSpec):
    """Cloud Storage bucket, optionally CMEK-encrypted by default."""

    kind: Literal["bucket"] = "bucket"
    location: str
    uniform_access: bool = Field(True, alias="uniformAccess")
    default_kms_key: str | None = Field(None, alias="defaultKmsKey")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if v.startswith("gs://"):
            raise ValueError("bucket name must not include the gs:// scheme")
        return v


class ArtifactRepositorySpec(BaseResourceSpec):
    kind: Literal["artifact-repository"] = "artifact-repository"
    location: str
    repository_format: str = Field("docker", alias="repositoryFormat")
    description: str = ""


ResourceSpec = Annotated[
    ServicesSpec
    | NetworkSpec
    | FirewallRuleSpec
    | ServiceAccountSpec
    | KmsKeyRingSpec
    | KmsKeySpec
    | BucketSpec
    | ArtifactRepositorySpec,
    Field(discriminator="kind"),
]

_RESOURCE_ADAPTER: TypeAdapter[ResourceSpec] = TypeAdapter(ResourceSpec)


def parse_resource(data: dict[str, object]) -> ResourceSpec:
    """Validate a mapping into the matching resource spec class.

    Raises:
        pydantic.ValidationError: If the kind is unknown or fields are invalid.
    """
    return _RESOURCE_ADAPTER.validate_python(data)


# =============================================================================
# IAM grants
# =============================================================================


class BindingSpec(BaseModel):
    """Roles granted to one member on one resource.

    Bindings have no lifecycle of their own. Granting is naturally
    idempotent on the provider side, so they are always re-applied.

    ``location`` and ``parent`` qualify targets that need them: the KMS
    key's location and keyring, the repository's location.
    """

    model_config = {"extra": "forbid", "frozen": True, "populate_by_name": True}

    target: BindingTarget
    resource: Annotated[str, Field(min_length=1)]
    member: str
    roles: tuple[str, ...] = Field(min_length=1)
    location: str | None = None
    parent: str | None = None
    depends_on: tuple[str, ...] = Field(default=(), alias="dependsOn")

    @field_validator("member")
    @classmethod
    def validate_member(cls, v: str) -> str:
        if not v.startswith(VALID_MEMBER_PREFIXES):
            raise ValueError(f"member must start with one of {VALID_MEMBER_PREFIXES}: {v}")
        return v

    @field_validator("roles")
    @classmethod
    def validate_roles(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for role in v:
            if not role.startswith(VALID_ROLE_PREFIX):
                raise ValueError(f"role must start with '{VALID_ROLE_PREFIX}': {role}")
        return v

    @property
    def kind(self) -> str:
        return "iam-binding"

    @property
    def name(self) -> str:
        return f"{self.target.value}:{self.resource}"

    @property
    def key(self) -> str:
        return f"iam-binding/{self.target.value}/{self.resource}/{self.member}"


# =============================================================================
# Service agent authorizations
# =============================================================================


class KmsAuthorizationSpec(BaseModel):
    """Lets a Google-managed service agent use a KMS key.

    Issued through the service's own authorize call, which also creates
    the agent when the project does not have one yet. Not an IAM binding
    of the plan, but re-applied on every run the same way.
    """

    model_config = {"extra": "forbid", "frozen": True, "populate_by_name": True}

    key_name: str = Field(alias="keyName", min_length=1)
    keyring: str
    location: str
    agent: str
    depends_on: tuple[str, ...] = Field(default=(), alias="dependsOn")

    @property
    def kind(self) -> str:
        return "kms-authorization"

    @property
    def name(self) -> str:
        return self.key_name

    @property
    def key(self) -> str:
        return f"kms-authorization/{self.key_name}/{self.agent}"


Step = ResourceSpec | BindingSpec | KmsAuthorizationSpec


# =============================================================================
# Results
# =============================================================================


class Outcome(str, Enum):
    """Per-step reconciliation outcome."""

    CREATED = "created"
    ALREADY_EXISTS = "already-exists"
    FAILED = "failed"


@dataclass
class ReconcileResult:
    """Outcome of applying one step."""

    key: str
    kind: str
    name: str
    outcome: Outcome
    reason: str | None = None
    error_category: str | None = None
    duration_seconds: float = 0.0

    @property
    def is_binding(self) -> bool:
        return self.kind == "iam-binding"

    @property
    def is_authorization(self) -> bool:
        return self.kind == "kms-authorization"

    @property
    def is_resource(self) -> bool:
        return not (self.is_binding or self.is_authorization)

    @property
    def success(self) -> bool:
        return self.outcome != Outcome.FAILED


@dataclass
class RunReport:
    """Ordered results of one reconciliation run."""

    project_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    results: list[ReconcileResult] = field(default_factory=list)
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def failed(self) -> ReconcileResult | None:
        """The result that stopped the run, if any."""
        for result in self.results:
            if not result.success:
                return result
        return None

    @property
    def success(self) -> bool:
        return self.error is None and self.failed is None

    @property
    def created_count(self) -> int:
        """Resources created in this run (grants and authorizations excluded)."""
        return sum(1 for r in self.results if r.is_resource and r.outcome == Outcome.CREATED)

    @property
    def existing_count(self) -> int:
        return sum(1 for r in self.results if r.outcome == Outcome.ALREADY_EXISTS)

    @property
    def binding_count(self) -> int:
        """Bindings applied successfully in this run."""
        return sum(1 for r in self.results if r.is_binding and r.outcome == Outcome.CREATED)

    @property
    def authorization_count(self) -> int:
        return sum(
            1 for r in self.results if r.is_authorization and r.outcome == Outcome.CREATED
        )
