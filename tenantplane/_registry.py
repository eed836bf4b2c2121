"""
tenantplane._registry
──────────────────────
The type registry: the single source of truth for which object kinds the
control plane handles, how they are addressed, which label carries their
declared-spec index, and which field indexes exist for reverse lookups.

A Scheme is an explicit value: build it once with ``build_scheme()`` at
process start and pass it to the store and every component that needs it.

Adding a new projected kind:
  1. Add its model to tier0_core.resources
  2. Register it below with its index label
  3. Give it a Projection in tier3_platform.projection
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from tenantplane.tier0_core import labels
from tenantplane.tier0_core.errors import ValidationError
from tenantplane.tier0_core.resources import (
    TENANT_API_VERSION,
    ClusterRole,
    ClusterRoleBinding,
    Endpoints,
    EndpointSlice,
    KubeObject,
    LimitRange,
    Namespace,
    NetworkPolicy,
    ResourceQuota,
    RoleBinding,
    Service,
    Tenant,
)

# Field index names
OWNER_INDEX = "metadata.ownerReferences.tenant"
OWNER_KIND_INDEX = "spec.owner.ownerkind"

Indexer = Callable[[KubeObject], list[str]]


@dataclass(frozen=True)
class KindInfo:
    kind: str
    model: type[KubeObject]
    plural: str
    namespaced: bool
    has_status: bool = False
    index_label: str | None = None
    version: str | None = None

    @property
    def api_version(self) -> str:
        return self.version or self.model.API_VERSION


@dataclass
class Scheme:
    """Kind registry plus named field indexers, keyed by kind."""

    kinds: dict[str, KindInfo] = field(default_factory=dict)
    indexers: dict[str, dict[str, Indexer]] = field(default_factory=dict)

    def register(self, info: KindInfo) -> None:
        self.kinds[info.kind] = info

    def add_indexer(self, kind: str, name: str, fn: Indexer) -> None:
        self.indexers.setdefault(kind, {})[name] = fn

    def info(self, kind: str | type[KubeObject] | KubeObject) -> KindInfo:
        key = _kind_of(kind)
        try:
            return self.kinds[key]
        except KeyError:
            raise ValidationError(user_message=f"Kind {key!r} is not registered.") from None

    def index_values(self, obj: KubeObject, name: str) -> list[str]:
        fn = self.indexers.get(obj.kind, {}).get(name)
        if fn is None:
            raise ValidationError(user_message=f"No field index {name!r} for kind {obj.kind!r}.")
        return fn(obj)

    def decode(self, manifest: dict[str, Any]) -> KubeObject:
        return self.info(manifest.get("kind", "")).model.model_validate(manifest)

    def index_label(self, kind: str | type[KubeObject]) -> str:
        label = self.info(kind).index_label
        if label is None:
            raise ValidationError(user_message=f"Kind {_kind_of(kind)!r} has no index label.")
        return label


def _kind_of(kind: str | type[KubeObject] | KubeObject) -> str:
    if isinstance(kind, str):
        return kind
    if isinstance(kind, KubeObject):
        return kind.kind
    return kind.KIND


def _tenant_owners(obj: KubeObject) -> list[str]:
    return [
        ref.name
        for ref in obj.metadata.owner_references
        if ref.kind == Tenant.KIND and ref.api_version == TENANT_API_VERSION
    ]


def _owner_kind(obj: KubeObject) -> list[str]:
    owner = obj.spec.owner  # type: ignore[attr-defined]
    return [f"{owner.kind}:{owner.name}"]


def build_scheme() -> Scheme:
    """Construct the scheme with every kind and field index the control plane uses."""
    scheme = Scheme()
    scheme.register(KindInfo("Tenant", Tenant, "tenants", namespaced=False, has_status=True))
    scheme.register(KindInfo("Namespace", Namespace, "namespaces", namespaced=False))
    scheme.register(KindInfo(
        "NetworkPolicy", NetworkPolicy, "networkpolicies", namespaced=True,
        index_label=labels.NETWORK_POLICY_LABEL,
    ))
    scheme.register(KindInfo(
        "LimitRange", LimitRange, "limitranges", namespaced=True,
        index_label=labels.LIMIT_RANGE_LABEL,
    ))
    scheme.register(KindInfo(
        "ResourceQuota", ResourceQuota, "resourcequotas", namespaced=True,
        has_status=True, index_label=labels.RESOURCE_QUOTA_LABEL,
    ))
    scheme.register(KindInfo("RoleBinding", RoleBinding, "rolebindings", namespaced=True))
    scheme.register(KindInfo("ClusterRole", ClusterRole, "clusterroles", namespaced=False))
    scheme.register(KindInfo(
        "ClusterRoleBinding", ClusterRoleBinding, "clusterrolebindings", namespaced=False,
    ))
    scheme.register(KindInfo("Service", Service, "services", namespaced=True))
    scheme.register(KindInfo("Endpoints", Endpoints, "endpoints", namespaced=True))

    scheme.add_indexer("Namespace", OWNER_INDEX, _tenant_owners)
    scheme.add_indexer("Tenant", OWNER_KIND_INDEX, _owner_kind)
    return scheme


def endpoint_slice_version(server_version: tuple[int, int]) -> str | None:
    """The discovery.k8s.io version serving EndpointSlices, None before they existed."""
    if server_version < (1, 16):
        return None
    if server_version == (1, 16):
        return "discovery.k8s.io/v1alpha1"
    if server_version < (1, 21):
        return "discovery.k8s.io/v1beta1"
    return "discovery.k8s.io/v1"


def register_endpoint_slices(scheme: Scheme, server_version: tuple[int, int]) -> str | None:
    """
    Register EndpointSlice under the version the cluster serves. Called once at
    start-up after probing the server; clusters without EndpointSlices leave
    the kind unregistered.
    """
    version = endpoint_slice_version(server_version)
    if version is not None:
        scheme.register(KindInfo(
            "EndpointSlice", EndpointSlice, "endpointslices", namespaced=True, version=version,
        ))
    return version


__all__ = [
    "OWNER_INDEX", "OWNER_KIND_INDEX", "KindInfo", "Scheme", "build_scheme",
    "endpoint_slice_version", "register_endpoint_slices",
]
