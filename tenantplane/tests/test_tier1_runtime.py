"""Tests for tier1_runtime modules."""
from __future__ import annotations

import pytest
import structlog
from pydantic import BaseModel

from tenantplane.tier0_core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from tenantplane.tier0_core.logging import bound_context
from tenantplane.tier1_runtime.context import get_context, reconcile_scope
from tenantplane.tier1_runtime.retry import Backoff, retry_on_conflict, retry_policy
from tenantplane.tier1_runtime.validate import validate_input

FAST = Backoff(duration=0.001, factor=1.0, jitter=0.0)


# ── retry ──────────────────────────────────────────────────────────────────

class TestRetryOnConflict:
    @pytest.mark.asyncio
    async def test_succeeds_after_conflicts(self):
        calls = 0

        async def op() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConflictError()
            return "ok"

        assert await retry_on_conflict(op, backoff=FAST) == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self):
        calls = 0

        async def op() -> None:
            nonlocal calls
            calls += 1
            raise ConflictError()

        with pytest.raises(ConflictError):
            await retry_on_conflict(op, max_attempts=2, backoff=FAST)
        assert calls == 2

    @pytest.mark.asyncio
    async def test_default_budget_is_backoff_steps(self):
        calls = 0

        async def op() -> None:
            nonlocal calls
            calls += 1
            raise ConflictError()

        with pytest.raises(ConflictError):
            await retry_on_conflict(op, backoff=Backoff(steps=4, duration=0.001))
        assert calls == 4

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        calls = 0

        async def op() -> None:
            nonlocal calls
            calls += 1
            raise NotFoundError()

        with pytest.raises(NotFoundError):
            await retry_on_conflict(op, backoff=FAST)
        assert calls == 1


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_retries_listed_errors(self):
        calls = 0

        @retry_policy(max_attempts=3, min_wait=0, max_wait=0, jitter=0, on=[UpstreamError])
        async def flaky() -> int:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise UpstreamError()
            return calls

        assert await flaky() == 3

    @pytest.mark.asyncio
    async def test_never_retries_validation_errors(self):
        calls = 0

        @retry_policy(max_attempts=3, min_wait=0, max_wait=0, jitter=0)
        async def invalid() -> None:
            nonlocal calls
            calls += 1
            raise ValidationError()

        with pytest.raises(ValidationError):
            await invalid()
        assert calls == 1


# ── context ────────────────────────────────────────────────────────────────

class TestReconcileContext:
    def test_scope_sets_and_resets(self):
        assert get_context() is None
        with reconcile_scope("t1") as ctx:
            assert get_context() is ctx
            assert ctx.tenant == "t1"
            assert ctx.reconcile_id
        assert get_context() is None

    def test_each_scope_gets_new_id(self):
        with reconcile_scope("t1") as a:
            pass
        with reconcile_scope("t1") as b:
            pass
        assert a.reconcile_id != b.reconcile_id

    def test_scope_binds_log_fields_and_restores_outer_ones(self):
        with bound_context(request_id="r-1", tenant="outer"):
            with reconcile_scope("t1") as ctx:
                fields = structlog.contextvars.get_contextvars()
                assert fields["tenant"] == "t1"
                assert fields["reconcile_id"] == ctx.reconcile_id
                assert fields["request_id"] == "r-1"
            fields = structlog.contextvars.get_contextvars()
            assert fields["tenant"] == "outer"
            assert "reconcile_id" not in fields
        assert "request_id" not in structlog.contextvars.get_contextvars()


# ── validate ───────────────────────────────────────────────────────────────

class _Payload(BaseModel):
    name: str
    size: int


class TestValidate:
    def test_valid_input(self):
        assert validate_input(_Payload, {"name": "t1", "size": 2}).size == 2

    def test_invalid_input_raises_our_error(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_input(_Payload, {"name": "t1", "size": "many"})
        assert "size" in exc_info.value.fields
