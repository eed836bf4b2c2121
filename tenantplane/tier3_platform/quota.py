"""
tenantplane.tier3_platform.quota
─────────────────────────────────
Tenant-wide ResourceQuota pools.

Every declared quota spec i is projected as one ResourceQuota "t-i" per
owned namespace. All objects labeled (tenant=t, resource-quota=i) form the
pool for spec i. On each pass, for every resource r declared in spec i:

    used = sum of status.used[r] over the pool
    used >= declared  → every sibling's hard[r] := its own used[r] (or 0)
    used <  declared  → every sibling's hard[r] := declared[r]

Resources are capped and restored independently of each other. A resource
spec i no longer declares is dropped from every sibling's hard map, along
with its usage annotation. Siblings
are written concurrently; each write re-reads its object and is retried on
conflict. If any sibling write fails the whole index fails with one
PartialFailureError, so the next pass recomputes from a fresh read.
"""
from __future__ import annotations

from tenantplane.tier0_core import labels
from tenantplane.tier0_core.logging import get_logger
from tenantplane.tier0_core.metrics import quota_pool_exhausted
from tenantplane.tier0_core.quantity import ZERO, compare_quantities, sum_quantities
from tenantplane.tier0_core.resources import ObjectMeta, ResourceQuota, ResourceQuotaSpec, Tenant
from tenantplane.tier0_core.store import ObjectStore, create_or_update, set_controller_reference
from tenantplane.tier0_core.tasks import fan_out, raise_for_failures
from tenantplane.tier1_runtime.retry import retry_on_conflict
from tenantplane.tier3_platform.projection import RESOURCE_QUOTAS, prune_resources

log = get_logger(__name__)


class QuotaAggregator:
    def __init__(self, store: ObjectStore, workers: int = 8, attempts: int | None = None) -> None:
        self.store = store
        self.workers = workers
        self.attempts = attempts

    async def sync(self, tenant: Tenant) -> None:
        declared = tenant.spec.resource_quotas
        for namespace in tenant.status.namespaces:
            await prune_resources(
                self.store, ResourceQuota, namespace,
                labels.RESOURCE_QUOTA_LABEL, range(len(declared)), self.attempts,
            )
            for index, spec in enumerate(declared):
                await self.aggregate(tenant, namespace, index, spec)

    async def aggregate(self, tenant: Tenant, namespace: str, index: int, spec: ResourceQuotaSpec) -> None:
        target = await self._ensure(tenant, namespace, index, spec)
        pool_labels = RESOURCE_QUOTAS.labels_for(tenant, index)
        siblings: list[ResourceQuota] = await self.store.list(
            ResourceQuota, selector=labels.selector_from(pool_labels)
        )
        for sibling in siblings:
            sibling.spec.hard = {r: q for r, q in sibling.spec.hard.items() if r in spec.hard}
        if not spec.hard:
            await self._push(spec, siblings)

        for resource, hard in spec.hard.items():
            used = sum_quantities(s.status.used.get(resource, ZERO) for s in siblings)
            exhausted = compare_quantities(used, hard) >= 0
            log.info(
                "quota.pool_computed", index=index, resource=resource,
                declared=hard, used=used, exhausted=exhausted,
            )
            quota_pool_exhausted(
                tenant=tenant.name, index=str(index), resource=resource
            ).set(1 if exhausted else 0)

            for sibling in siblings:
                if exhausted:
                    sibling.spec.hard[resource] = sibling.status.used.get(resource, ZERO)
                else:
                    sibling.spec.hard[resource] = hard
                    if sibling.name == target.name and sibling.namespace == target.namespace:
                        sibling.spec.scopes = spec.scopes
                        sibling.spec.scope_selector = spec.scope_selector

            await self._push(spec, siblings, resource, used)

    async def _ensure(self, tenant: Tenant, namespace: str, index: int, spec: ResourceQuotaSpec) -> ResourceQuota:
        """Make sure "t-i" exists in the namespace; a new object starts from the declared spec."""
        target = ResourceQuota(
            metadata=ObjectMeta(name=RESOURCE_QUOTAS.name_for(tenant, index), namespace=namespace)
        )
        wanted_labels = RESOURCE_QUOTAS.labels_for(tenant, index)

        def mutate(obj: ResourceQuota) -> None:
            if obj.metadata.resource_version is None:
                obj.spec = spec.model_copy(deep=True)
            obj.metadata.labels = {**obj.metadata.labels, **wanted_labels}
            set_controller_reference(tenant, obj)

        result, stored = await retry_on_conflict(
            lambda: create_or_update(self.store, target, mutate), self.attempts
        )
        log.info("quota.ensured", name=stored.name, namespace=namespace, result=result.value)
        return stored

    async def _push(
        self,
        spec: ResourceQuotaSpec,
        siblings: list[ResourceQuota],
        resource: str | None = None,
        used: str | None = None,
    ) -> None:
        """Write the computed hard maps (and the pool usage of `resource`) to every sibling."""
        declared = {labels.used_quota_annotation(r) for r in spec.hard}
        prefix = labels.used_quota_annotation("")

        def annotations(current: dict[str, str]) -> dict[str, str]:
            kept = {k: v for k, v in current.items() if not k.startswith(prefix) or k in declared}
            if resource is not None:
                kept[labels.used_quota_annotation(resource)] = used
            return kept

        async def _write(sibling: ResourceQuota) -> bool:
            async def _apply() -> bool:
                found: ResourceQuota = await self.store.get(ResourceQuota, sibling.name, sibling.namespace)
                before = found.to_manifest()
                found.metadata.labels = dict(sibling.metadata.labels)
                found.metadata.annotations = annotations(found.metadata.annotations)
                found.spec.hard = dict(sibling.spec.hard)
                found.spec.scopes = sibling.spec.scopes
                found.spec.scope_selector = sibling.spec.scope_selector
                if found.to_manifest() == before:
                    return False
                await self.store.update(found)
                return True

            return await retry_on_conflict(_apply, self.attempts)

        outcomes = await fan_out(siblings, _write, limit=self.workers)
        raise_for_failures(
            outcomes, "quota sibling updates",
            describe=lambda s: f"{s.namespace}/{s.name}", resource=resource,
        )


__all__ = ["QuotaAggregator"]
