"""
tenantplane.tier1_runtime.context
──────────────────────────────────
Reconcile context: which tenant is being reconciled and a correlation id
for the pass, propagated across awaits into every log line.

Uses Python contextvars for async-safe storage and mirrors the values into
structlog contextvars, so concurrent reconciles never mix their fields.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field

from tenantplane.tier0_core.logging import bound_context


@dataclass(frozen=True)
class ReconcileContext:
    tenant: str
    reconcile_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


_ctx: ContextVar[ReconcileContext | None] = ContextVar("tenantplane_reconcile_context", default=None)


def get_context() -> ReconcileContext | None:
    return _ctx.get()


@contextmanager
def reconcile_scope(tenant: str) -> Iterator[ReconcileContext]:
    """
    Activate a ReconcileContext for the body of the with-block.

    Usage:
        with reconcile_scope("oil") as ctx:
            log.info("tenant.reconcile_start")   # carries tenant + reconcile_id
    """
    ctx = ReconcileContext(tenant=tenant)
    token = _ctx.set(ctx)
    with bound_context(tenant=ctx.tenant, reconcile_id=ctx.reconcile_id):
        try:
            yield ctx
        finally:
            _ctx.reset(token)


__all__ = ["ReconcileContext", "get_context", "reconcile_scope"]
