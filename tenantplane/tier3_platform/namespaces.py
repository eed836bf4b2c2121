"""
tenantplane.tier3_platform.namespaces
──────────────────────────────────────
Namespace-facing reconcile phases:

  collect_namespaces     rebuild tenant.status.namespaces from the
                         namespace → tenant owner-reference index
  sync_namespaces        label each owned namespace and publish the allowed
                         ingress/storage classes as annotations (fan-out)
  ensure_node_selector   publish the tenant node selector on each namespace
  ensure_namespace_count republish status.size

The label on the namespace is the source of truth for membership; the
tenant status is only a view of it, rebuilt on every pass.
"""
from __future__ import annotations

from tenantplane._registry import OWNER_INDEX
from tenantplane.tier0_core import labels
from tenantplane.tier0_core.errors import NotFoundError
from tenantplane.tier0_core.logging import get_logger
from tenantplane.tier0_core.resources import Namespace, Tenant
from tenantplane.tier0_core.store import ObjectStore
from tenantplane.tier0_core.tasks import fan_out, raise_for_failures
from tenantplane.tier1_runtime.retry import retry_on_conflict

log = get_logger(__name__)


async def collect_namespaces(store: ObjectStore, tenant_name: str, attempts: int | None = None) -> Tenant:
    """
    Write the sorted set of namespaces owned by the tenant into its status,
    along with the denormalized owner user/group lists. Returns the tenant
    as stored after the write.
    """
    owned = await store.list(Namespace, field=(OWNER_INDEX, tenant_name))

    async def _write() -> Tenant:
        tenant: Tenant = await store.get(Tenant, tenant_name)
        before = tenant.status.to_manifest()
        tenant.assign_namespaces(owned)
        owner = tenant.spec.owner
        tenant.status.users = [owner.name] if owner.kind != "Group" else []
        tenant.status.groups = [owner.name] if owner.kind == "Group" else []
        if tenant.status.to_manifest() == before:
            return tenant
        return await store.update_status(tenant)

    tenant = await retry_on_conflict(_write, attempts)
    log.info("namespaces.collected", count=len(tenant.status.namespaces))
    return tenant


def _class_annotations(tenant: Tenant) -> dict[str, str | None]:
    spec = tenant.spec
    return {
        labels.INGRESS_CLASSES_ANNOTATION: ",".join(spec.ingress_classes) or None,
        labels.STORAGE_CLASSES_ANNOTATION: ",".join(spec.storage_classes) or None,
    }


async def _update_namespace(
    store: ObjectStore, name: str, tenant: Tenant, attempts: int | None,
    annotations: dict[str, str | None],
) -> bool:
    async def _apply() -> bool:
        try:
            ns: Namespace = await store.get(Namespace, name)
        except NotFoundError:
            log.info("namespaces.skipped_missing", namespace=name)
            return False
        wanted_labels = {**ns.metadata.labels, labels.TENANT_LABEL: tenant.name}
        wanted_annotations = dict(ns.metadata.annotations)
        for key, value in annotations.items():
            if value is None:
                wanted_annotations.pop(key, None)
            else:
                wanted_annotations[key] = value
        if wanted_labels == ns.metadata.labels and wanted_annotations == ns.metadata.annotations:
            return False
        ns.metadata.labels = wanted_labels
        ns.metadata.annotations = wanted_annotations
        await store.update(ns)
        return True

    return await retry_on_conflict(_apply, attempts)


async def sync_namespaces(
    store: ObjectStore, tenant: Tenant, limit: int = 8, attempts: int | None = None
) -> None:
    """Label and annotate every owned namespace concurrently; one failure fails the phase."""
    annotations = _class_annotations(tenant)
    outcomes = await fan_out(
        tenant.status.namespaces,
        lambda name: _update_namespace(store, name, tenant, attempts, annotations),
        limit=limit,
    )
    raise_for_failures(outcomes, "namespace updates", tenant=tenant.name)


async def ensure_node_selector(store: ObjectStore, tenant: Tenant, attempts: int | None = None) -> None:
    selector = tenant.spec.node_selector
    if selector is None:
        return
    value = ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
    for name in tenant.status.namespaces:

        async def _apply(name: str = name) -> None:
            try:
                ns: Namespace = await store.get(Namespace, name)
            except NotFoundError:
                return
            if ns.metadata.annotations.get(labels.NODE_SELECTOR_ANNOTATION) == value:
                return
            ns.metadata.annotations[labels.NODE_SELECTOR_ANNOTATION] = value
            await store.update(ns)

        await retry_on_conflict(_apply, attempts)


async def ensure_namespace_count(store: ObjectStore, tenant_name: str, attempts: int | None = None) -> Tenant:
    """Set status.size to the number of owned namespaces."""

    async def _write() -> Tenant:
        tenant: Tenant = await store.get(Tenant, tenant_name)
        size = len(tenant.status.namespaces)
        if tenant.status.size == size:
            return tenant
        tenant.status.size = size
        return await store.update_status(tenant)

    return await retry_on_conflict(_write, attempts)


__all__ = ["collect_namespaces", "sync_namespaces", "ensure_node_selector", "ensure_namespace_count"]
