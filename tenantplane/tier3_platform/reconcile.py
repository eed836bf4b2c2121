"""
tenantplane.tier3_platform.reconcile
─────────────────────────────────────
The tenant reconcile driver. For one tenant key it runs, strictly in order:

  collect → namespaces → network policies → node selector → limit ranges
  → resource quotas → owner role bindings → service metadata
  → namespace count

The first failing phase aborts the pass and its error is raised to the
caller (the work queue), which re-queues the key with backoff. Every phase
is safe to re-run from scratch. A tenant that no longer exists is not an
error: its objects are collected through their owner references.
"""
from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

from tenantplane.tier0_core.config import ManagerConfig
from tenantplane.tier0_core.errors import NotFoundError
from tenantplane.tier0_core.logging import get_logger
from tenantplane.tier0_core.metrics import reconcile_duration, reconcile_total, tenant_size
from tenantplane.tier0_core.resources import Tenant
from tenantplane.tier0_core.store import ObjectStore
from tenantplane.tier1_runtime.context import reconcile_scope
from tenantplane.tier3_platform.namespaces import (
    collect_namespaces,
    ensure_namespace_count,
    ensure_node_selector,
    sync_namespaces,
)
from tenantplane.tier3_platform.projection import LIMIT_RANGES, NETWORK_POLICIES, Synchronizer
from tenantplane.tier3_platform.quota import QuotaAggregator
from tenantplane.tier3_platform.rbac import sync_owner_role_bindings
from tenantplane.tier3_platform.services import ServiceMetadataSync

log = get_logger(__name__)


class TenantReconciler:
    def __init__(self, store: ObjectStore, config: ManagerConfig) -> None:
        self.store = store
        self.attempts = config.conflict_retry_attempts
        self.fanout_workers = config.fanout_workers
        self.network_policies = Synchronizer(store, NETWORK_POLICIES, self.attempts)
        self.limit_ranges = Synchronizer(store, LIMIT_RANGES, self.attempts)
        self.quotas = QuotaAggregator(store, workers=self.fanout_workers, attempts=self.attempts)
        self.services = ServiceMetadataSync(store, workers=self.fanout_workers, attempts=self.attempts)

    async def reconcile(self, name: str) -> Tenant | None:
        """Run every phase for tenant `name`. Returns the tenant as last stored, None if gone."""
        start = time.monotonic()
        result = "error"
        with reconcile_scope(name):
            log.info("tenant.reconcile_start")
            try:
                try:
                    await self.store.get(Tenant, name)
                except NotFoundError:
                    log.info("tenant.not_found")
                    result = "not_found"
                    return None

                tenant = await self._phase(
                    "collect", lambda: collect_namespaces(self.store, name, self.attempts)
                )
                await self._phase(
                    "namespaces",
                    lambda: sync_namespaces(self.store, tenant, self.fanout_workers, self.attempts),
                )
                await self._phase("network_policies", lambda: self.network_policies.sync(tenant))
                await self._phase(
                    "node_selector", lambda: ensure_node_selector(self.store, tenant, self.attempts)
                )
                await self._phase("limit_ranges", lambda: self.limit_ranges.sync(tenant))
                await self._phase("resource_quotas", lambda: self.quotas.sync(tenant))
                await self._phase(
                    "role_bindings", lambda: sync_owner_role_bindings(self.store, tenant, self.attempts)
                )
                await self._phase("service_metadata", lambda: self.services.sync(tenant))
                tenant = await self._phase(
                    "namespace_count", lambda: ensure_namespace_count(self.store, name, self.attempts)
                )
                tenant_size(tenant=name).set(tenant.status.size)
                result = "success"
                log.info("tenant.reconcile_done", size=tenant.status.size)
                return tenant
            finally:
                reconcile_total(result=result).inc()
                reconcile_duration(result=result).observe(time.monotonic() - start)

    async def _phase(self, phase: str, run: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await run()
        except Exception as exc:
            log.error("tenant.phase_failed", phase=phase, error=str(exc), exc_info=True)
            raise


__all__ = ["TenantReconciler"]
