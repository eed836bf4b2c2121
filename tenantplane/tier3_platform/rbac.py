"""
tenantplane.tier3_platform.rbac
────────────────────────────────
RBAC artifacts managed by the control plane.

Per owned namespace (reconcile phase):
  namespace:admin    → ClusterRole admin
  namespace:deleter  → ClusterRole tenantplane-namespace:deleter
both bound to the tenant owner, labeled with the tenant and owned by it.

Cluster-wide (once at start-up):
  ClusterRole tenantplane-namespace:provisioner   create namespaces
  ClusterRole tenantplane-namespace:deleter       delete namespaces
  ClusterRoleBinding tenantplane-namespace:provisioner → the owner group
"""
from __future__ import annotations

from tenantplane.tier0_core import labels
from tenantplane.tier0_core.errors import NotFoundError
from tenantplane.tier0_core.logging import get_logger
from tenantplane.tier0_core.resources import (
    RBAC_API_GROUP,
    ClusterRole,
    ClusterRoleBinding,
    ObjectMeta,
    OwnerSpec,
    PolicyRule,
    RoleBinding,
    RoleRef,
    Subject,
    Tenant,
)
from tenantplane.tier0_core.store import (
    ObjectStore,
    OperationResult,
    create_or_update,
    set_controller_reference,
)
from tenantplane.tier1_runtime.retry import retry_on_conflict

log = get_logger(__name__)

PROVISIONER_ROLE = "tenantplane-namespace:provisioner"
DELETER_ROLE = "tenantplane-namespace:deleter"

OWNER_ROLE_BINDINGS: dict[str, str] = {
    "namespace:admin": "admin",
    "namespace:deleter": DELETER_ROLE,
}

_SERVICE_ACCOUNT_PREFIX = "system:serviceaccount:"


def owner_subject(owner: OwnerSpec) -> Subject:
    if owner.kind == "ServiceAccount":
        # "system:serviceaccount:<namespace>:<name>" or a bare name
        namespace, _, name = owner.name.removeprefix(_SERVICE_ACCOUNT_PREFIX).rpartition(":")
        return Subject(kind="ServiceAccount", name=name, namespace=namespace or None)
    return Subject(kind=owner.kind, name=owner.name, api_group=RBAC_API_GROUP)


async def sync_owner_role_bindings(
    store: ObjectStore, tenant: Tenant, attempts: int | None = None
) -> list[OperationResult]:
    subjects = [owner_subject(tenant.spec.owner)]
    tenant_labels = {labels.TENANT_LABEL: tenant.name}
    results = []
    for namespace in tenant.status.namespaces:
        for name, role in OWNER_ROLE_BINDINGS.items():
            target = RoleBinding(
                metadata=ObjectMeta(name=name, namespace=namespace),
                role_ref=RoleRef(name=role),
            )

            def mutate(obj: RoleBinding, role: str = role) -> None:
                obj.metadata.labels = dict(tenant_labels)
                obj.subjects = [s.model_copy() for s in subjects]
                obj.role_ref = RoleRef(name=role)
                set_controller_reference(tenant, obj)

            result, _ = await retry_on_conflict(
                lambda target=target, mutate=mutate: create_or_update(store, target, mutate),
                attempts,
            )
            log.info("rbac.role_binding_synced", name=name, namespace=namespace, result=result.value)
            results.append(result)
    return results


# ── Cluster bootstrap ─────────────────────────────────────────────────────────

_CLUSTER_ROLES: dict[str, list[PolicyRule]] = {
    PROVISIONER_ROLE: [PolicyRule(api_groups=[""], resources=["namespaces"], verbs=["create"])],
    DELETER_ROLE: [PolicyRule(api_groups=[""], resources=["namespaces"], verbs=["delete"])],
}


async def setup_cluster_roles(store: ObjectStore, owner_group: str) -> None:
    """
    Create or update the cluster roles and the provisioner binding. A binding
    whose roleRef differs is deleted and recreated, since roleRef is immutable.
    """
    for name, rules in _CLUSTER_ROLES.items():
        def mutate_role(obj: ClusterRole, rules: list[PolicyRule] = rules) -> None:
            obj.rules = [r.model_copy() for r in rules]

        result, _ = await retry_on_conflict(
            lambda name=name, mutate_role=mutate_role: create_or_update(
                store, ClusterRole(metadata=ObjectMeta(name=name)), mutate_role
            )
        )
        log.info("rbac.cluster_role_synced", name=name, result=result.value)

    role_ref = RoleRef(name=PROVISIONER_ROLE)
    subjects = [Subject(kind="Group", name=owner_group, api_group=RBAC_API_GROUP)]
    try:
        existing: ClusterRoleBinding | None = await store.get(ClusterRoleBinding, PROVISIONER_ROLE)
    except NotFoundError:
        existing = None
    if existing is not None and existing.role_ref.to_manifest() != role_ref.to_manifest():
        log.warning("rbac.role_ref_changed", name=PROVISIONER_ROLE)
        await store.delete(ClusterRoleBinding, PROVISIONER_ROLE)

    def mutate_binding(obj: ClusterRoleBinding) -> None:
        obj.role_ref = role_ref
        obj.subjects = [s.model_copy() for s in subjects]

    result, _ = await retry_on_conflict(
        lambda: create_or_update(
            store,
            ClusterRoleBinding(metadata=ObjectMeta(name=PROVISIONER_ROLE), role_ref=role_ref),
            mutate_binding,
        )
    )
    log.info("rbac.cluster_role_binding_synced", name=PROVISIONER_ROLE, group=owner_group, result=result.value)


__all__ = [
    "PROVISIONER_ROLE", "DELETER_ROLE", "OWNER_ROLE_BINDINGS",
    "owner_subject", "sync_owner_role_bindings", "setup_cluster_roles",
]
