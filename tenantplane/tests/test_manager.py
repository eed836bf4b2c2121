"""Tests for the manager wiring, cluster RBAC bootstrap and the CLI."""
from __future__ import annotations

import asyncio
import json

import pytest
from typer.testing import CliRunner

from tenantplane import __version__
from tenantplane.cli import app as cli_app
from tenantplane.manager import Manager, tenant_keys
from tenantplane.tier0_core import labels
from tenantplane.tier0_core.resources import (
    ClusterRole,
    ClusterRoleBinding,
    LimitRange,
    ObjectMeta,
    OwnerSpec,
    RoleRef,
    controller_reference,
)
from tenantplane.tier3_platform.rbac import DELETER_ROLE, PROVISIONER_ROLE, owner_subject


@pytest.fixture
def manager(store, config, scheme):
    return Manager(config, store=store, scheme=scheme)


# ── keys ──────────────────────────────────────────────────────────────────

class TestTenantKeys:
    @pytest.mark.asyncio
    async def test_tenant_maps_to_itself(self, make_tenant):
        tenant = await make_tenant("oil")
        assert tenant_keys(tenant) == {"oil"}

    @pytest.mark.asyncio
    async def test_owned_object_maps_to_owner(self, make_tenant):
        tenant = await make_tenant("oil")
        lr = LimitRange(metadata=ObjectMeta(name="oil-0", namespace="ns"))
        lr.metadata.owner_references = [controller_reference(tenant)]
        assert tenant_keys(lr) == {"oil"}

    def test_labelled_object_maps_to_label(self):
        lr = LimitRange(metadata=ObjectMeta(name="x", namespace="ns", labels={labels.TENANT_LABEL: "gas"}))
        assert tenant_keys(lr) == {"gas"}

    def test_unrelated_object_maps_to_nothing(self):
        assert tenant_keys(LimitRange(metadata=ObjectMeta(name="x", namespace="ns"))) == set()


# ── manager ───────────────────────────────────────────────────────────────

class TestManager:
    @pytest.mark.asyncio
    async def test_enqueue_all_adds_every_tenant(self, manager, make_tenant):
        await make_tenant("a")
        await make_tenant("b")
        assert await manager.enqueue_all() == 2
        assert len(manager.queue) == 2

    @pytest.mark.asyncio
    async def test_watch_feeds_queue(self, manager, make_tenant):
        task = asyncio.create_task(manager._watch_loop(manager.store))
        await asyncio.sleep(0)
        await make_tenant("a")
        for _ in range(10):
            if len(manager.queue):
                break
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(manager.queue) == 1

    @pytest.mark.asyncio
    async def test_bootstrap_creates_cluster_rbac(self, manager, store):
        await manager.bootstrap()

        roles = {r.name for r in await store.list(ClusterRole)}
        assert roles == {PROVISIONER_ROLE, DELETER_ROLE}
        binding = await store.get(ClusterRoleBinding, PROVISIONER_ROLE)
        assert binding.role_ref.name == PROVISIONER_ROLE
        assert [(s.kind, s.name) for s in binding.subjects] == [("Group", manager.config.owner_group)]

    @pytest.mark.asyncio
    async def test_bootstrap_is_idempotent(self, manager, store):
        await manager.bootstrap()
        writes = len(store.journal)
        await manager.bootstrap()
        assert len(store.journal) == writes

    @pytest.mark.asyncio
    async def test_changed_role_ref_recreates_binding(self, manager, store):
        await store.create(ClusterRoleBinding(
            metadata=ObjectMeta(name=PROVISIONER_ROLE),
            role_ref=RoleRef(name="something-else"),
        ))
        await manager.bootstrap()

        binding = await store.get(ClusterRoleBinding, PROVISIONER_ROLE)
        assert binding.role_ref.name == PROVISIONER_ROLE
        verbs = [op.verb for op in store.writes(ClusterRoleBinding)]
        assert verbs == ["create", "delete", "create"]


class TestOwnerSubject:
    def test_service_account_is_split(self):
        subject = owner_subject(OwnerSpec(kind="ServiceAccount", name="system:serviceaccount:tools:ci"))
        assert (subject.kind, subject.namespace, subject.name) == ("ServiceAccount", "tools", "ci")
        assert subject.api_group is None

    def test_user(self):
        subject = owner_subject(OwnerSpec(kind="User", name="alice"))
        assert subject.api_group == "rbac.authorization.k8s.io"


# ── cli ───────────────────────────────────────────────────────────────────

runner = CliRunner()


class TestCli:
    def test_version(self):
        result = runner.invoke(cli_app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_config_prints_effective_settings(self):
        result = runner.invoke(cli_app, ["config"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["store_backend"] == "memory"
        assert data["environment"] == "test"

    def test_invalid_option_exits_nonzero(self):
        result = runner.invoke(cli_app, ["run", "--protected-namespace-regex", "(["])
        assert result.exit_code == 1
