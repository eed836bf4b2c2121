"""
tenantplane.tier3_platform.projection
──────────────────────────────────────
Projection of a tenant's declared policy lists into its namespaces.

A Projection is the small capability set that distinguishes one projected
kind from another: the kind, where its declared specs live on the tenant,
its index label and how a declared spec is written onto an object. One
Synchronizer drives any Projection; prune_resources removes the objects
whose index fell out of the declared list.

Object for (tenant t, index i, namespace n) is named "t-i" in n and carries
    tenantplane.io/tenant=t, <index label>=i
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from tenantplane.tier0_core import labels
from tenantplane.tier0_core.logging import get_logger
from tenantplane.tier0_core.resources import (
    KubeObject,
    LimitRange,
    NetworkPolicy,
    ObjectMeta,
    ResourceQuota,
    Tenant,
)
from tenantplane.tier0_core.store import (
    ObjectStore,
    OperationResult,
    create_or_update,
    set_controller_reference,
)
from tenantplane.tier1_runtime.retry import Backoff, retry_on_conflict

log = get_logger(__name__)

PRUNE_BACKOFF = Backoff(duration=0.01, factor=1.0)


def object_name(tenant: Tenant, index: int) -> str:
    return f"{tenant.name}-{index}"


@dataclass(frozen=True)
class Projection:
    kind: type[KubeObject]
    index_label: str
    declared: Callable[[Tenant], list[Any]]
    set_spec: Callable[[KubeObject, Any], None]
    name_for: Callable[[Tenant, int], str] = object_name

    def labels_for(self, tenant: Tenant, index: int) -> dict[str, str]:
        return {labels.TENANT_LABEL: tenant.name, self.index_label: str(index)}


def _copy_dict_spec(obj: KubeObject, spec: Any) -> None:
    obj.spec = dict(spec)  # type: ignore[attr-defined]


def _copy_quota_spec(obj: KubeObject, spec: Any) -> None:
    obj.spec = spec.model_copy(deep=True)  # type: ignore[attr-defined]


NETWORK_POLICIES = Projection(
    kind=NetworkPolicy,
    index_label=labels.NETWORK_POLICY_LABEL,
    declared=lambda t: t.spec.network_policies,
    set_spec=_copy_dict_spec,
)

LIMIT_RANGES = Projection(
    kind=LimitRange,
    index_label=labels.LIMIT_RANGE_LABEL,
    declared=lambda t: t.spec.limit_ranges,
    set_spec=_copy_dict_spec,
)

RESOURCE_QUOTAS = Projection(
    kind=ResourceQuota,
    index_label=labels.RESOURCE_QUOTA_LABEL,
    declared=lambda t: t.spec.resource_quotas,
    set_spec=_copy_quota_spec,
)


# ── Pruner ────────────────────────────────────────────────────────────────────

async def prune_resources(
    store: ObjectStore,
    kind: type[KubeObject],
    namespace: str,
    index_label: str,
    declared: Iterable[int],
    attempts: int | None = None,
) -> int:
    """
    Delete the objects in `namespace` that carry `index_label` with a value
    outside `declared`. Returns how many were deleted; zero is success.
    """
    selector = labels.outer_join_selector(index_label, [str(i) for i in declared])
    deleted = await retry_on_conflict(
        lambda: store.delete_all_of(kind, namespace=namespace, selector=selector),
        attempts,
        PRUNE_BACKOFF,
    )
    if deleted:
        log.info("projection.pruned", kind=kind.KIND, namespace=namespace, count=deleted)
    return deleted


# ── Synchronizer ──────────────────────────────────────────────────────────────

class Synchronizer:
    """Projects one declared list into every owned namespace, then prunes stale indices."""

    def __init__(self, store: ObjectStore, projection: Projection, attempts: int | None = None) -> None:
        self.store = store
        self.projection = projection
        self.attempts = attempts

    async def sync(self, tenant: Tenant) -> list[OperationResult]:
        specs = self.projection.declared(tenant)
        results = []
        for namespace in tenant.status.namespaces:
            await prune_resources(
                self.store, self.projection.kind, namespace,
                self.projection.index_label, range(len(specs)), self.attempts,
            )
            for index, spec in enumerate(specs):
                results.append(await self.project(tenant, namespace, index, spec))
        return results

    async def project(self, tenant: Tenant, namespace: str, index: int, spec: Any) -> OperationResult:
        p = self.projection
        target = p.kind(metadata=ObjectMeta(name=p.name_for(tenant, index), namespace=namespace))
        wanted_labels = p.labels_for(tenant, index)

        def mutate(obj: KubeObject) -> None:
            obj.metadata.labels = dict(wanted_labels)
            p.set_spec(obj, spec)
            set_controller_reference(tenant, obj)

        result, _ = await retry_on_conflict(
            lambda: create_or_update(self.store, target, mutate), self.attempts
        )
        log.info(
            "projection.synced", kind=p.kind.KIND, name=target.name,
            namespace=namespace, result=result.value,
        )
        return result


__all__ = [
    "PRUNE_BACKOFF", "Projection", "object_name",
    "NETWORK_POLICIES", "LIMIT_RANGES", "RESOURCE_QUOTAS",
    "prune_resources", "Synchronizer",
]
