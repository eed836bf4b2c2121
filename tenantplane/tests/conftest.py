"""
tenantplane test configuration.

All tests run against the in-memory object store, no cluster required.
Override by setting environment variables before running pytest.
"""
from __future__ import annotations

import os

import pytest

# ── Force in-memory backends for all tests ────────────────────────────────
# These must be set before any tenantplane modules read their config.

os.environ.setdefault("TENANTPLANE_STORE_BACKEND", "memory")
os.environ.setdefault("TENANTPLANE_ENVIRONMENT", "test")
os.environ.setdefault("TENANTPLANE_LOG_FORMAT", "console")
os.environ.setdefault("TENANTPLANE_LOG_LEVEL", "WARNING")

from tenantplane._registry import build_scheme  # noqa: E402
from tenantplane.tier0_core.config import _reset_config, load_config  # noqa: E402
from tenantplane.tier0_core.resources import (  # noqa: E402
    Namespace,
    ObjectMeta,
    OwnerSpec,
    ResourceQuota,
    Tenant,
    TenantSpec,
    controller_reference,
)
from tenantplane.tier0_core.store import InMemoryObjectStore  # noqa: E402


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_cached_config():
    """Each test sees the environment as it is when the test starts."""
    _reset_config()
    yield
    _reset_config()


@pytest.fixture
def scheme():
    return build_scheme()


@pytest.fixture
def store(scheme):
    """A fresh in-memory store per test."""
    return InMemoryObjectStore(scheme)


@pytest.fixture
def config():
    return load_config(environment="test", fanout_workers=4, reconcile_workers=2)


@pytest.fixture
def make_tenant(store):
    """
    Factory storing a Tenant.

    Usage:
        tenant = await make_tenant("t1", owner="alice", resource_quotas=[...])
    """
    async def _make(
        name: str = "t1",
        owner: str = "alice",
        owner_kind: str = "User",
        namespace_quota: int = 10,
        **spec,
    ) -> Tenant:
        tenant = Tenant(
            metadata=ObjectMeta(name=name),
            spec=TenantSpec(
                owner=OwnerSpec(kind=owner_kind, name=owner),
                namespace_quota=namespace_quota,
                **spec,
            ),
        )
        return await store.create(tenant)

    return _make


@pytest.fixture
def bind_namespace(store):
    """Factory storing a Namespace controlled by a tenant, as admission leaves it."""
    async def _bind(tenant: Tenant, name: str, labels: dict | None = None) -> Namespace:
        namespace = Namespace(metadata=ObjectMeta(name=name, labels=labels or {}))
        namespace.metadata.owner_references = [controller_reference(tenant)]
        return await store.create(namespace)

    return _bind


@pytest.fixture
def set_used(store):
    """Factory writing status.used on a quota, as the cluster's quota controller does."""
    async def _set(namespace: str, name: str, used: dict[str, str]) -> ResourceQuota:
        quota = await store.get(ResourceQuota, name, namespace)
        quota.status.used = dict(used)
        return await store.update_status(quota)

    return _set
