"""
tenantplane.tier0_core.tasks
─────────────────────────────
Concurrency primitives for reconciliation:

  - fan_out: run one coroutine per item under a concurrency bound, wait for
    all of them, and hand back every outcome. Failures never cancel
    siblings; raise_for_failures turns them into one PartialFailureError.
  - WorkQueue: keyed, de-duplicating work queue. A key is queued at most
    once, handled by at most one worker at a time, re-queued when it was
    added again mid-handling, and re-queued with per-key exponential
    backoff when its handler fails.
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tenantplane.tier0_core.errors import PartialFailureError
from tenantplane.tier0_core.logging import get_logger

I = TypeVar("I")
R = TypeVar("R")

log = get_logger(__name__)


# ── Fan-out ───────────────────────────────────────────────────────────────────

@dataclass
class Outcome(Generic[I, R]):
    item: I
    result: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def fan_out(
    items: Iterable[I],
    worker: Callable[[I], Awaitable[R]],
    limit: int = 8,
) -> list[Outcome[I, R]]:
    """Run `worker` for every item, at most `limit` at a time. Outcomes keep input order."""
    semaphore = asyncio.Semaphore(limit)
    outcomes: list[Outcome[I, R]] = [Outcome(item) for item in items]

    async def _run(outcome: Outcome[I, R]) -> None:
        async with semaphore:
            try:
                outcome.result = await worker(outcome.item)
            except Exception as exc:
                outcome.error = exc

    async with asyncio.TaskGroup() as tg:
        for outcome in outcomes:
            tg.create_task(_run(outcome))
    return outcomes


def raise_for_failures(
    outcomes: list[Outcome[Any, Any]],
    what: str,
    describe: Callable[[Any], str] = str,
    **metadata: Any,
) -> None:
    failed = [o for o in outcomes if o.error is not None]
    if not failed:
        return
    for o in failed:
        log.warning("fan_out.item_failed", what=what, item=describe(o.item), error=str(o.error))
    raise PartialFailureError(
        user_message=f"{len(failed)} of {len(outcomes)} {what} failed.",
        detail=f"{what}: " + "; ".join(f"{describe(o.item)}: {o.error}" for o in failed),
        errors=[o.error for o in failed if o.error is not None],
        **metadata,
    )


# ── Work queue ────────────────────────────────────────────────────────────────

class WorkQueue:
    """
    De-duplicating keyed queue with rate-limited re-queue on failure.

    Usage:
        queue = WorkQueue()
        queue.add("tenant-a")
        await queue.run(reconciler.reconcile, workers=4)   # until shutdown()
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 300.0) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._queued: set[str] = set()
        self._processing: set[str] = set()
        self._dirty: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._workers = 0
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queued)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        if self._shutting_down:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, _fire)
        self._timers.add(handle)

    def add_rate_limited(self, key: str) -> float:
        """Re-queue after base_delay * 2**failures, capped at max_delay."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2 ** failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str | None:
        key = await self._queue.get()
        if key is None:
            return None
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    async def run(self, handler: Callable[[str], Awaitable[Any]], workers: int = 1) -> None:
        """Process keys with `workers` concurrent workers until shutdown()."""
        self._workers += workers

        async def _worker() -> None:
            while True:
                key = await self.get()
                if key is None:
                    return
                try:
                    await handler(key)
                except Exception as exc:
                    delay = self.add_rate_limited(key)
                    log.error("workqueue.handler_failed", key=key, error=str(exc), requeue_in=delay)
                else:
                    self.forget(key)
                finally:
                    self.done(key)

        async with asyncio.TaskGroup() as tg:
            for _ in range(workers):
                tg.create_task(_worker())

    def shutdown(self) -> None:
        """Stop accepting keys; workers exit once their current key is done."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        for _ in range(self._workers):
            self._queue.put_nowait(None)
        self._workers = 0


__all__ = ["Outcome", "fan_out", "raise_for_failures", "WorkQueue"]
