"""Tests for the sub-resource synchronizer and the pruner."""
from __future__ import annotations

import pytest

from tenantplane.tier0_core import labels
from tenantplane.tier0_core.resources import LimitRange, NetworkPolicy, ObjectMeta, Tenant
from tenantplane.tier0_core.store import OperationResult
from tenantplane.tier3_platform.namespaces import collect_namespaces
from tenantplane.tier3_platform.projection import (
    LIMIT_RANGES,
    NETWORK_POLICIES,
    Synchronizer,
    prune_resources,
)

POLICIES = [
    {"podSelector": {}, "policyTypes": ["Ingress"]},
    {"podSelector": {"matchLabels": {"app": "web"}}, "policyTypes": ["Egress"]},
]

LIMITS = [
    {"limits": [{"type": "Pod", "max": {"cpu": "1"}}]},
    {"limits": [{"type": "Container", "default": {"cpu": "500m"}}]},
    {"limits": [{"type": "PersistentVolumeClaim", "max": {"storage": "10Gi"}}]},
]


@pytest.fixture
def tenant_with_namespaces(store, make_tenant, bind_namespace):
    async def _setup(**spec) -> Tenant:
        tenant = await make_tenant("t1", **spec)
        await bind_namespace(tenant, "t1-a")
        await bind_namespace(tenant, "t1-b")
        return await collect_namespaces(store, "t1")

    return _setup


# ── synchronizer ───────────────────────────────────────────────────────────

class TestSynchronizer:
    @pytest.mark.asyncio
    async def test_projects_every_index_into_every_namespace(self, store, tenant_with_namespaces):
        tenant = await tenant_with_namespaces(network_policies=POLICIES)
        results = await Synchronizer(store, NETWORK_POLICIES).sync(tenant)
        assert results == [OperationResult.CREATED] * 4

        policy = await store.get(NetworkPolicy, "t1-1", "t1-b")
        assert policy.spec == POLICIES[1]
        assert policy.metadata.labels == {
            labels.TENANT_LABEL: "t1",
            labels.NETWORK_POLICY_LABEL: "1",
        }
        ref = policy.metadata.owner_references[0]
        assert (ref.kind, ref.name, ref.controller) == ("Tenant", "t1", True)

    @pytest.mark.asyncio
    async def test_second_run_writes_nothing(self, store, tenant_with_namespaces):
        tenant = await tenant_with_namespaces(network_policies=POLICIES)
        sync = Synchronizer(store, NETWORK_POLICIES)
        await sync.sync(tenant)

        writes = len(store.journal)
        results = await sync.sync(tenant)
        assert results == [OperationResult.UNCHANGED] * 4
        assert len(store.journal) == writes

    @pytest.mark.asyncio
    async def test_third_party_edits_are_reverted(self, store, tenant_with_namespaces):
        tenant = await tenant_with_namespaces(network_policies=POLICIES)
        sync = Synchronizer(store, NETWORK_POLICIES)
        await sync.sync(tenant)

        edited = await store.get(NetworkPolicy, "t1-0", "t1-a")
        edited.spec = {"podSelector": {}, "policyTypes": []}
        edited.metadata.labels["extra"] = "yes"
        await store.update(edited)

        results = await sync.sync(tenant)
        assert results.count(OperationResult.UPDATED) == 1
        restored = await store.get(NetworkPolicy, "t1-0", "t1-a")
        assert restored.spec == POLICIES[0]
        assert "extra" not in restored.metadata.labels

    @pytest.mark.asyncio
    async def test_declared_spec_changes_propagate(self, store, tenant_with_namespaces):
        tenant = await tenant_with_namespaces(limit_ranges=LIMITS)
        sync = Synchronizer(store, LIMIT_RANGES)
        await sync.sync(tenant)

        tenant.spec.limit_ranges[0] = {"limits": [{"type": "Pod", "max": {"cpu": "2"}}]}
        await sync.sync(tenant)
        for ns in ("t1-a", "t1-b"):
            lr = await store.get(LimitRange, "t1-0", ns)
            assert lr.spec["limits"][0]["max"]["cpu"] == "2"


# ── pruner ─────────────────────────────────────────────────────────────────

class TestPruner:
    @pytest.mark.asyncio
    async def test_removing_index_two_deletes_only_index_two(self, store, tenant_with_namespaces):
        tenant = await tenant_with_namespaces(limit_ranges=LIMITS, network_policies=POLICIES)
        await Synchronizer(store, NETWORK_POLICIES).sync(tenant)
        sync = Synchronizer(store, LIMIT_RANGES)
        await sync.sync(tenant)

        tenant.spec.limit_ranges = LIMITS[:2]
        journal_start = len(store.journal)
        await sync.sync(tenant)

        deletes = [op for op in store.journal[journal_start:] if op.verb == "delete"]
        assert sorted((op.kind, op.namespace, op.name) for op in deletes) == [
            ("LimitRange", "t1-a", "t1-2"),
            ("LimitRange", "t1-b", "t1-2"),
        ]
        remaining = await store.list(LimitRange)
        assert sorted(lr.name for lr in remaining) == ["t1-0", "t1-0", "t1-1", "t1-1"]
        assert len(await store.list(NetworkPolicy)) == 4

    @pytest.mark.asyncio
    async def test_empty_declaration_prunes_all_managed_objects(self, store):
        await store.create(LimitRange(metadata=ObjectMeta(
            name="t1-0", namespace="n1", labels={labels.LIMIT_RANGE_LABEL: "0"},
        )))
        await store.create(LimitRange(metadata=ObjectMeta(name="handmade", namespace="n1")))

        deleted = await prune_resources(store, LimitRange, "n1", labels.LIMIT_RANGE_LABEL, [])
        assert deleted == 1
        assert [lr.name for lr in await store.list(LimitRange)] == ["handmade"]

    @pytest.mark.asyncio
    async def test_nothing_to_prune_is_success(self, store):
        assert await prune_resources(store, LimitRange, "n1", labels.LIMIT_RANGE_LABEL, [0, 1]) == 0
