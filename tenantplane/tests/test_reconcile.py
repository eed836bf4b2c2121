"""End-to-end tests for the tenant reconcile driver against the in-memory store."""
from __future__ import annotations

import pytest

from tenantplane.tier0_core import labels
from tenantplane.tier0_core.errors import UpstreamError
from tenantplane.tier0_core.resources import (
    LimitRange,
    Namespace,
    NetworkPolicy,
    ResourceQuota,
    RoleBinding,
    Tenant,
)
from tenantplane.tier3_platform.rbac import DELETER_ROLE
from tenantplane.tier3_platform.reconcile import TenantReconciler

FULL_SPEC = dict(
    ingress_classes=["nginx", "haproxy"],
    storage_classes=["ceph"],
    node_selector={"zone": "b", "pool": "gold"},
    network_policies=[{"podSelector": {}, "policyTypes": ["Ingress"]}],
    limit_ranges=[{"limits": [{"type": "Pod", "max": {"cpu": "1"}}]}],
    resource_quotas=[{"hard": {"pods": "10"}}],
)


@pytest.fixture
def reconciler(store, config):
    return TenantReconciler(store, config)


@pytest.fixture
def populated(make_tenant, bind_namespace):
    async def _setup(**spec) -> Tenant:
        tenant = await make_tenant("oil", **{**FULL_SPEC, **spec})
        await bind_namespace(tenant, "oil-prod")
        await bind_namespace(tenant, "oil-dev")
        return tenant

    return _setup


class TestReconcile:
    @pytest.mark.asyncio
    async def test_full_pass_converges_tenant(self, store, reconciler, populated):
        await populated()
        tenant = await reconciler.reconcile("oil")

        assert tenant.status.namespaces == ["oil-dev", "oil-prod"]
        assert tenant.status.size == len(tenant.status.namespaces) == 2
        assert tenant.status.users == ["alice"]
        assert tenant.status.groups == []

        ns = await store.get(Namespace, "oil-prod")
        assert ns.metadata.labels[labels.TENANT_LABEL] == "oil"
        assert ns.metadata.annotations[labels.INGRESS_CLASSES_ANNOTATION] == "nginx,haproxy"
        assert ns.metadata.annotations[labels.STORAGE_CLASSES_ANNOTATION] == "ceph"
        assert ns.metadata.annotations[labels.NODE_SELECTOR_ANNOTATION] == "pool=gold,zone=b"

        assert len(await store.list(NetworkPolicy)) == 2
        assert len(await store.list(LimitRange)) == 2
        assert len(await store.list(ResourceQuota)) == 2

    @pytest.mark.asyncio
    async def test_owner_role_bindings_are_created(self, store, reconciler, populated):
        await populated()
        await reconciler.reconcile("oil")

        bindings = await store.list(RoleBinding, namespace="oil-dev")
        by_name = {b.name: b for b in bindings}
        assert set(by_name) == {"namespace:admin", "namespace:deleter"}
        assert by_name["namespace:admin"].role_ref.name == "admin"
        assert by_name["namespace:deleter"].role_ref.name == DELETER_ROLE
        subject = by_name["namespace:admin"].subjects[0]
        assert (subject.kind, subject.name) == ("User", "alice")
        assert by_name["namespace:admin"].metadata.labels == {labels.TENANT_LABEL: "oil"}

    @pytest.mark.asyncio
    async def test_second_pass_writes_nothing(self, store, reconciler, populated):
        await populated()
        await reconciler.reconcile("oil")

        writes = len(store.journal)
        await reconciler.reconcile("oil")
        assert store.journal[writes:] == []

    @pytest.mark.asyncio
    async def test_size_follows_deleted_namespace(self, store, reconciler, populated):
        await populated()
        await reconciler.reconcile("oil")

        await store.delete(Namespace, "oil-dev")
        tenant = await reconciler.reconcile("oil")
        assert tenant.status.namespaces == ["oil-prod"]
        assert tenant.status.size == 1

    @pytest.mark.asyncio
    async def test_empty_class_lists_remove_annotations(self, store, reconciler, populated):
        await populated()
        await reconciler.reconcile("oil")

        tenant = await store.get(Tenant, "oil")
        tenant.spec.ingress_classes = []
        await store.update(tenant)
        await reconciler.reconcile("oil")

        ns = await store.get(Namespace, "oil-prod")
        assert labels.INGRESS_CLASSES_ANNOTATION not in ns.metadata.annotations
        assert ns.metadata.annotations[labels.STORAGE_CLASSES_ANNOTATION] == "ceph"

    @pytest.mark.asyncio
    async def test_missing_tenant_is_not_an_error(self, reconciler):
        assert await reconciler.reconcile("ghost") is None

    @pytest.mark.asyncio
    async def test_failing_phase_aborts_later_phases(self, store, reconciler, populated):
        await populated()
        store.inject_fault("list", NetworkPolicy, UpstreamError())

        with pytest.raises(UpstreamError):
            await reconciler.reconcile("oil")

        assert store.writes(LimitRange) == []
        assert store.writes(RoleBinding) == []
        tenant = await store.get(Tenant, "oil")
        assert tenant.status.size == 0
        assert tenant.status.namespaces == ["oil-dev", "oil-prod"]

    @pytest.mark.asyncio
    async def test_group_owner_lands_in_status_groups(self, store, reconciler, make_tenant, bind_namespace):
        tenant = await make_tenant("gas", owner="platform", owner_kind="Group")
        await bind_namespace(tenant, "gas-a")

        tenant = await reconciler.reconcile("gas")
        assert tenant.status.groups == ["platform"]
        assert tenant.status.users == []
        binding = await store.get(RoleBinding, "namespace:admin", "gas-a")
        assert binding.subjects[0].kind == "Group"
