"""Tests for service metadata propagation and the EndpointSlice version probe."""
from __future__ import annotations

import pytest

from tenantplane._registry import build_scheme, endpoint_slice_version, register_endpoint_slices
from tenantplane.manager import Manager
from tenantplane.tier0_core import labels
from tenantplane.tier0_core.errors import PartialFailureError, UpstreamError
from tenantplane.tier0_core.resources import Endpoints, EndpointSlice, Namespace, ObjectMeta, Service
from tenantplane.tier0_core.store import InMemoryObjectStore
from tenantplane.tier3_platform.namespaces import collect_namespaces
from tenantplane.tier3_platform.services import ServiceMetadataSync

METADATA = {"additionalLabels": {"team": "oil"}, "additionalAnnotations": {"cost-center": "42"}}


@pytest.fixture
def sliced_store(scheme, store):
    register_endpoint_slices(scheme, (1, 30))
    return store


@pytest.fixture
def populated(sliced_store, make_tenant, bind_namespace):
    async def _setup(services_metadata=METADATA):
        tenant = await make_tenant("oil", services_metadata=services_metadata)
        await bind_namespace(tenant, "oil-dev")
        for ns in ("oil-dev", "elsewhere"):
            await sliced_store.create(Service(metadata=ObjectMeta(
                name="web", namespace=ns, labels={"app": "web", "team": "someone-else"},
            ), spec={"ports": [{"port": 80}]}))
            await sliced_store.create(Endpoints(metadata=ObjectMeta(name="web", namespace=ns)))
            await sliced_store.create(EndpointSlice(metadata=ObjectMeta(name="web-abc", namespace=ns)))
        return await collect_namespaces(sliced_store, "oil")

    return _setup


# ── version probe ─────────────────────────────────────────────────────────

class TestEndpointSliceVersion:
    @pytest.mark.parametrize("version,expected", [
        ((1, 15), None),
        ((1, 16), "discovery.k8s.io/v1alpha1"),
        ((1, 19), "discovery.k8s.io/v1beta1"),
        ((1, 21), "discovery.k8s.io/v1"),
        ((2, 0), "discovery.k8s.io/v1"),
    ])
    def test_version_by_server(self, version, expected):
        assert endpoint_slice_version(version) == expected

    def test_registration_records_served_version(self):
        scheme = build_scheme()
        register_endpoint_slices(scheme, (1, 16))
        assert scheme.info(EndpointSlice).api_version == "discovery.k8s.io/v1alpha1"

    def test_old_servers_leave_kind_unregistered(self):
        scheme = build_scheme()
        assert register_endpoint_slices(scheme, (1, 14)) is None
        assert "EndpointSlice" not in scheme.kinds

    @pytest.mark.asyncio
    async def test_bootstrap_probes_store(self, config):
        scheme = build_scheme()
        manager = Manager(config, store=InMemoryObjectStore(scheme, cluster_version=(1, 18)))
        await manager.bootstrap()
        assert scheme.info(EndpointSlice).api_version == "discovery.k8s.io/v1beta1"


# ── propagation ───────────────────────────────────────────────────────────

class TestServiceMetadataSync:
    @pytest.mark.asyncio
    async def test_metadata_lands_on_every_networking_object(self, sliced_store, populated):
        tenant = await populated()
        updated = await ServiceMetadataSync(sliced_store).sync(tenant)
        assert updated == 3

        for kind, name in ((Service, "web"), (Endpoints, "web"), (EndpointSlice, "web-abc")):
            obj = await sliced_store.get(kind, name, "oil-dev")
            assert obj.metadata.labels["team"] == "oil"
            assert obj.metadata.annotations["cost-center"] == "42"

        service = await sliced_store.get(Service, "web", "oil-dev")
        assert service.metadata.labels["app"] == "web"
        assert service.spec == {"ports": [{"port": 80}]}

    @pytest.mark.asyncio
    async def test_other_namespaces_are_untouched(self, sliced_store, populated):
        tenant = await populated()
        await ServiceMetadataSync(sliced_store).sync(tenant)

        outside = await sliced_store.get(Service, "web", "elsewhere")
        assert outside.metadata.labels["team"] == "someone-else"
        assert outside.metadata.annotations == {}

    @pytest.mark.asyncio
    async def test_second_run_writes_nothing(self, sliced_store, populated):
        tenant = await populated()
        sync = ServiceMetadataSync(sliced_store)
        await sync.sync(tenant)
        assert await sync.sync(tenant) == 0

    @pytest.mark.asyncio
    async def test_tenant_without_metadata_is_skipped(self, sliced_store, populated):
        tenant = await populated(services_metadata=None)
        writes = len(sliced_store.journal)
        assert await ServiceMetadataSync(sliced_store).sync(tenant) == 0
        assert len(sliced_store.journal) == writes

    @pytest.mark.asyncio
    async def test_unregistered_endpoint_slices_are_ignored(self, store, make_tenant, bind_namespace):
        tenant = await make_tenant("oil", services_metadata=METADATA)
        await bind_namespace(tenant, "oil-dev")
        await store.create(Service(metadata=ObjectMeta(name="web", namespace="oil-dev")))
        tenant = await collect_namespaces(store, "oil")

        sync = ServiceMetadataSync(store)
        assert "EndpointSlice" not in sync.kinds()
        assert await sync.sync(tenant) == 1

    @pytest.mark.asyncio
    async def test_failed_write_fails_the_phase(self, sliced_store, populated):
        tenant = await populated()
        sliced_store.inject_fault("update", Endpoints, UpstreamError())
        with pytest.raises(PartialFailureError):
            await ServiceMetadataSync(sliced_store).sync(tenant)


class TestWatchKeys:
    @pytest.mark.asyncio
    async def test_unlabelled_service_maps_to_namespace_tenant(self, store, config):
        await store.create(Namespace(metadata=ObjectMeta(name="oil-dev", labels={labels.TENANT_LABEL: "oil"})))
        manager = Manager(config, store=store)

        service = Service(metadata=ObjectMeta(name="web", namespace="oil-dev"))
        assert await manager.keys_for(service) == {"oil"}

        stray = Service(metadata=ObjectMeta(name="web", namespace="missing"))
        assert await manager.keys_for(stray) == set()
