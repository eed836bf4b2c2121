"""
tenantplane.manager
────────────────────
Process entry point for the control plane.

  1. configure logging, build the scheme and the object store
  2. probe the server version, register the EndpointSlice variant it serves
     and bootstrap cluster RBAC (fatal when the store stays unreachable)
  3. serve Prometheus metrics on --metrics-addr
  4. serve the admission webhooks (uvicorn)
  5. reconcile tenants from the work queue; keys come from a periodic
     resync of every tenant and, when the store has one, its change feed

SIGINT / SIGTERM stop the webhook server and drain the work queue.
"""
from __future__ import annotations

import asyncio
import signal

import uvicorn

from tenantplane._registry import Scheme, build_scheme, register_endpoint_slices
from tenantplane.tier0_core import labels
from tenantplane.tier0_core.config import ManagerConfig
from tenantplane.tier0_core.errors import NotFoundError, TenancyError, UpstreamError
from tenantplane.tier0_core.logging import configure_logging, get_logger
from tenantplane.tier0_core.metrics import start_metrics_server
from tenantplane.tier0_core.resources import KubeObject, Namespace, Tenant
from tenantplane.tier0_core.store import ObjectStore, WatchableStore, new_store
from tenantplane.tier0_core.tasks import WorkQueue
from tenantplane.tier1_runtime.retry import retry_policy
from tenantplane.tier3_platform.admission import OwnerAssignment
from tenantplane.tier3_platform.rbac import setup_cluster_roles
from tenantplane.tier3_platform.reconcile import TenantReconciler
from tenantplane.tier3_platform.services import SERVICE_KINDS
from tenantplane.tier3_platform.webhook import create_app

log = get_logger("tenantplane.manager")

# Give the API server time to persist an admitted namespace before reconciling.
ADMISSION_REQUEUE_DELAY = 1.0


def tenant_keys(obj: KubeObject) -> set[str]:
    """Tenants affected by a change to `obj`."""
    if isinstance(obj, Tenant):
        return {obj.name}
    keys = {ref.name for ref in obj.metadata.owner_references if ref.kind == Tenant.KIND}
    tenant = obj.metadata.labels.get(labels.TENANT_LABEL)
    if tenant:
        keys.add(tenant)
    return keys


class Manager:
    def __init__(
        self,
        config: ManagerConfig,
        store: ObjectStore | None = None,
        scheme: Scheme | None = None,
    ) -> None:
        self.config = config
        if store is None:
            store = new_store(scheme or build_scheme(), config.store_backend, config.kubeconfig)
        self.store = store
        self.scheme = store.scheme
        self.queue = WorkQueue()
        self.reconciler = TenantReconciler(self.store, config)
        self.assignment = OwnerAssignment(
            self.store,
            force_tenant_prefix=config.force_tenant_prefix,
            protected_pattern=config.protected_namespace_pattern,
        )
        self.app = create_app(self.assignment, on_assigned=self._on_assigned)

    def _on_assigned(self, tenant: str) -> None:
        self.queue.add_after(tenant, ADMISSION_REQUEUE_DELAY)

    @retry_policy(max_attempts=5, on=[UpstreamError])
    async def bootstrap(self) -> None:
        major, minor = await self.store.server_version()
        served = register_endpoint_slices(self.scheme, (major, minor))
        log.info("manager.server_version", version=f"{major}.{minor}", endpoint_slices=served)
        await setup_cluster_roles(self.store, self.config.owner_group)

    async def enqueue_all(self) -> int:
        tenants = await self.store.list(Tenant)
        for tenant in tenants:
            self.queue.add(tenant.name)
        return len(tenants)

    async def _resync_loop(self) -> None:
        while not self.queue.shutting_down:
            try:
                count = await self.enqueue_all()
                log.debug("manager.resync", tenants=count)
            except TenancyError as exc:
                log.error("manager.resync_failed", error=str(exc))
            await asyncio.sleep(self.config.resync_period_seconds)

    async def keys_for(self, obj: KubeObject) -> set[str]:
        """tenant_keys, plus the namespace's tenant for unlabelled networking objects."""
        keys = tenant_keys(obj)
        if keys or obj.kind not in SERVICE_KINDS or not obj.namespace:
            return keys
        try:
            ns: Namespace = await self.store.get(Namespace, obj.namespace)
        except NotFoundError:
            return keys
        tenant = ns.metadata.labels.get(labels.TENANT_LABEL)
        return {tenant} if tenant else keys

    async def _watch_loop(self, source: WatchableStore) -> None:
        events = source.subscribe()
        try:
            while True:
                event = await events.get()
                for key in await self.keys_for(event.object):
                    self.queue.add(key)
        finally:
            source.unsubscribe(events)

    def _server(self) -> uvicorn.Server:
        cfg = self.config
        return uvicorn.Server(uvicorn.Config(
            self.app,
            host=cfg.webhook_host,
            port=cfg.webhook_port,
            ssl_certfile=cfg.webhook_cert_file,
            ssl_keyfile=cfg.webhook_key_file,
            log_config=None,
        ))

    async def run(self, stop: asyncio.Event) -> None:
        cfg = self.config
        if cfg.enable_leader_election:
            log.warning("manager.leader_election_external", detail="run a single replica or an external elector")
        await self.bootstrap()
        start_metrics_server(cfg.metrics_port)
        server = self._server()
        log.info(
            "manager.started", webhook_port=cfg.webhook_port, metrics=cfg.metrics_addr,
            store=cfg.store_backend, workers=cfg.reconcile_workers,
        )

        async with asyncio.TaskGroup() as tg:
            tg.create_task(self.queue.run(self.reconciler.reconcile, cfg.reconcile_workers))
            background = [tg.create_task(self._resync_loop())]
            if isinstance(self.store, WatchableStore):
                background.append(tg.create_task(self._watch_loop(self.store)))
            tg.create_task(server.serve())

            await stop.wait()
            log.info("manager.stopping")
            server.should_exit = True
            self.queue.shutdown()
            for task in background:
                task.cancel()

        log.info("manager.stopped")


async def _main(config: ManagerConfig) -> None:
    manager = Manager(config)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)
    await manager.run(stop)


def run(config: ManagerConfig) -> None:
    configure_logging(config.log_level, config.log_format)
    asyncio.run(_main(config))


__all__ = ["ADMISSION_REQUEUE_DELAY", "tenant_keys", "Manager", "run"]
