"""
tenantplane.tier3_platform.services
────────────────────────────────────
Service metadata propagation.

A tenant may declare additional labels and annotations for the networking
objects in its namespaces. Every Service, Endpoints and (when the cluster
serves them) EndpointSlice in an owned namespace gets those keys merged into
its metadata; keys the tenant does not declare are left alone.

Which EndpointSlice version is read and written is decided once at start-up
by register_endpoint_slices; this module only asks the scheme whether the
kind is registered.
"""
from __future__ import annotations

from tenantplane.tier0_core.errors import NotFoundError
from tenantplane.tier0_core.logging import get_logger
from tenantplane.tier0_core.resources import KubeObject, ServicesMetadata, Tenant
from tenantplane.tier0_core.store import ObjectStore
from tenantplane.tier0_core.tasks import fan_out, raise_for_failures
from tenantplane.tier1_runtime.retry import retry_on_conflict

log = get_logger(__name__)

SERVICE_KINDS = ("Service", "Endpoints", "EndpointSlice")


def merge_metadata(current: dict[str, str], additional: dict[str, str] | None) -> dict[str, str]:
    return {**current, **(additional or {})}


class ServiceMetadataSync:
    def __init__(self, store: ObjectStore, workers: int = 8, attempts: int | None = None) -> None:
        self.store = store
        self.workers = workers
        self.attempts = attempts

    def kinds(self) -> list[str]:
        return [kind for kind in SERVICE_KINDS if kind in self.store.scheme.kinds]

    async def sync(self, tenant: Tenant) -> int:
        """Merge the tenant's service metadata into every networking object it owns. Returns the number updated."""
        wanted = tenant.spec.services_metadata
        if wanted is None or not (wanted.additional_labels or wanted.additional_annotations):
            log.debug("services.no_metadata")
            return 0

        objects: list[KubeObject] = []
        for namespace in tenant.status.namespaces:
            for kind in self.kinds():
                objects.extend(await self.store.list(kind, namespace=namespace))

        outcomes = await fan_out(objects, lambda obj: self._apply(obj, wanted), limit=self.workers)
        raise_for_failures(
            outcomes, "service metadata updates",
            describe=lambda o: f"{o.kind} {o.namespace}/{o.name}", tenant=tenant.name,
        )
        updated = sum(1 for o in outcomes if o.result)
        log.info("services.synced", objects=len(objects), updated=updated)
        return updated

    async def _apply(self, obj: KubeObject, wanted: ServicesMetadata) -> bool:
        async def _write() -> bool:
            try:
                found: KubeObject = await self.store.get(obj.kind, obj.name, obj.namespace)
            except NotFoundError:
                return False
            new_labels = merge_metadata(found.metadata.labels, wanted.additional_labels)
            new_annotations = merge_metadata(found.metadata.annotations, wanted.additional_annotations)
            if new_labels == found.metadata.labels and new_annotations == found.metadata.annotations:
                return False
            found.metadata.labels = new_labels
            found.metadata.annotations = new_annotations
            await self.store.update(found)
            return True

        return await retry_on_conflict(_write, self.attempts)


__all__ = ["SERVICE_KINDS", "merge_metadata", "ServiceMetadataSync"]
