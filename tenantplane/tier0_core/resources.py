"""
tenantplane.tier0_core.resources
─────────────────────────────────
Typed models for every object kind the control plane reads or writes.
Field names are snake_case in Python and camelCase on the wire, so
`model_dump(by_alias=True)` yields manifests the cluster accepts and
`model_validate(manifest)` reads them back.

Policy payloads the control plane only copies around (network policy and
limit range specs) stay plain dicts; quota specs are typed because the
aggregator reads and rewrites their hard limits.
"""
from __future__ import annotations

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tenantplane.tier0_core.config import GROUP

TENANT_API_VERSION = f"{GROUP}/v1alpha1"
RBAC_API_GROUP = "rbac.authorization.k8s.io"

OwnerKind = Literal["User", "Group", "ServiceAccount"]


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_manifest(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ── Metadata ──────────────────────────────────────────────────────────────────

class OwnerReference(_Model):
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectMeta(_Model):
    name: str
    namespace: str | None = None
    uid: str | None = None
    resource_version: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    finalizers: list[str] | None = None


class KubeObject(_Model):
    """Common envelope: apiVersion, kind, metadata."""

    API_VERSION: ClassVar[str] = "v1"
    KIND: ClassVar[str] = ""

    api_version: str = ""
    kind: str = ""
    metadata: ObjectMeta

    def model_post_init(self, __context: Any) -> None:
        if not self.api_version:
            self.api_version = self.API_VERSION
        if not self.kind:
            self.kind = self.KIND

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str | None:
        return self.metadata.namespace


# ── Tenant ────────────────────────────────────────────────────────────────────

class OwnerSpec(_Model):
    kind: OwnerKind
    name: str


class ResourceQuotaSpec(_Model):
    hard: dict[str, str] = Field(default_factory=dict)
    scopes: list[str] | None = None
    scope_selector: dict[str, Any] | None = None


class ServicesMetadata(_Model):
    additional_labels: dict[str, str] | None = None
    additional_annotations: dict[str, str] | None = None


class TenantSpec(_Model):
    owner: OwnerSpec
    namespace_quota: int = Field(ge=1)
    storage_classes: list[str] = Field(default_factory=list)
    ingress_classes: list[str] = Field(default_factory=list)
    node_selector: dict[str, str] | None = None
    network_policies: list[dict[str, Any]] = Field(default_factory=list)
    limit_ranges: list[dict[str, Any]] = Field(default_factory=list)
    resource_quotas: list[ResourceQuotaSpec] = Field(default_factory=list)
    services_metadata: ServicesMetadata | None = None


class TenantStatus(_Model):
    size: int = 0
    namespaces: list[str] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)


class Tenant(KubeObject):
    API_VERSION: ClassVar[str] = TENANT_API_VERSION
    KIND: ClassVar[str] = "Tenant"

    spec: TenantSpec
    status: TenantStatus = Field(default_factory=TenantStatus)

    def assign_namespaces(self, namespaces: list[Namespace]) -> None:
        """Rebuild status.namespaces as the sorted, de-duplicated set of names."""
        self.status.namespaces = sorted({ns.name for ns in namespaces})

    def is_owned_by(self, username: str, groups: list[str]) -> bool:
        owner = self.spec.owner
        if owner.kind in ("User", "ServiceAccount"):
            return owner.name == username
        return owner.name in groups


# ── Core kinds ────────────────────────────────────────────────────────────────

class Namespace(KubeObject):
    KIND: ClassVar[str] = "Namespace"


class NetworkPolicy(KubeObject):
    API_VERSION: ClassVar[str] = "networking.k8s.io/v1"
    KIND: ClassVar[str] = "NetworkPolicy"

    spec: dict[str, Any] = Field(default_factory=dict)


class Service(KubeObject):
    KIND: ClassVar[str] = "Service"

    spec: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, Any] | None = None


class Endpoints(KubeObject):
    KIND: ClassVar[str] = "Endpoints"

    subsets: list[dict[str, Any]] | None = None


class EndpointSlice(KubeObject):
    # The served discovery version depends on the cluster; the scheme records which one.
    API_VERSION: ClassVar[str] = "discovery.k8s.io/v1"
    KIND: ClassVar[str] = "EndpointSlice"

    address_type: str = "IPv4"
    endpoints: list[dict[str, Any]] = Field(default_factory=list)
    ports: list[dict[str, Any]] | None = None


class LimitRange(KubeObject):
    KIND: ClassVar[str] = "LimitRange"

    spec: dict[str, Any] = Field(default_factory=dict)


class ResourceQuotaStatus(_Model):
    hard: dict[str, str] = Field(default_factory=dict)
    used: dict[str, str] = Field(default_factory=dict)


class ResourceQuota(KubeObject):
    KIND: ClassVar[str] = "ResourceQuota"

    spec: ResourceQuotaSpec = Field(default_factory=ResourceQuotaSpec)
    status: ResourceQuotaStatus = Field(default_factory=ResourceQuotaStatus)


# ── RBAC ──────────────────────────────────────────────────────────────────────

class Subject(_Model):
    kind: str
    name: str
    api_group: str | None = None
    namespace: str | None = None


class RoleRef(_Model):
    api_group: str = RBAC_API_GROUP
    kind: str = "ClusterRole"
    name: str


class PolicyRule(_Model):
    api_groups: list[str] = Field(default_factory=list)
    resources: list[str] = Field(default_factory=list)
    verbs: list[str] = Field(default_factory=list)


class RoleBinding(KubeObject):
    API_VERSION: ClassVar[str] = f"{RBAC_API_GROUP}/v1"
    KIND: ClassVar[str] = "RoleBinding"

    subjects: list[Subject] = Field(default_factory=list)
    role_ref: RoleRef


class ClusterRole(KubeObject):
    API_VERSION: ClassVar[str] = f"{RBAC_API_GROUP}/v1"
    KIND: ClassVar[str] = "ClusterRole"

    rules: list[PolicyRule] = Field(default_factory=list)


class ClusterRoleBinding(KubeObject):
    API_VERSION: ClassVar[str] = f"{RBAC_API_GROUP}/v1"
    KIND: ClassVar[str] = "ClusterRoleBinding"

    subjects: list[Subject] = Field(default_factory=list)
    role_ref: RoleRef


def controller_reference(owner: KubeObject) -> OwnerReference:
    return OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.metadata.uid or "",
        controller=True,
        block_owner_deletion=True,
    )


__all__ = [
    "TENANT_API_VERSION", "RBAC_API_GROUP", "OwnerKind",
    "OwnerReference", "ObjectMeta", "KubeObject",
    "OwnerSpec", "ResourceQuotaSpec", "ServicesMetadata", "TenantSpec", "TenantStatus", "Tenant",
    "Namespace", "NetworkPolicy", "Service", "Endpoints", "EndpointSlice", "LimitRange",
    "ResourceQuotaStatus", "ResourceQuota",
    "Subject", "RoleRef", "PolicyRule", "RoleBinding", "ClusterRole", "ClusterRoleBinding",
    "controller_reference",
]
