"""
tenantplane.tier0_core.store
─────────────────────────────
The cluster object store the control plane reads from and writes to.
Every object carries a resource version; writes against a stale version
raise ConflictError, which callers resolve with retry_on_conflict.

Backends:
  - InMemoryObjectStore  (dev/test): versioned dicts, owner-reference
    garbage collection, a write journal and a change-event feed
  - KubernetesObjectStore (prod)   : the official `kubernetes` dynamic client

Configure via: TENANTPLANE_STORE_BACKEND=memory|kubernetes
"""
from __future__ import annotations

import asyncio
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, TypeVar, runtime_checkable

from tenantplane._registry import KindInfo, Scheme
from tenantplane.tier0_core.errors import (
    AlreadyExistsError,
    AlreadyOwnedError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    TenancyError,
    UpstreamError,
)
from tenantplane.tier0_core.labels import Selector
from tenantplane.tier0_core.resources import KubeObject, controller_reference

T = TypeVar("T", bound=KubeObject)

KindRef = str | type[KubeObject]
FieldMatch = tuple[str, str]


# ── Protocol ──────────────────────────────────────────────────────────────────

@runtime_checkable
class ObjectStore(Protocol):
    """Abstract object store; swap the in-memory and cluster backends freely."""

    scheme: Scheme

    async def get(self, kind: KindRef, name: str, namespace: str | None = None) -> Any: ...

    async def list(
        self,
        kind: KindRef,
        namespace: str | None = None,
        selector: Selector | None = None,
        field: FieldMatch | None = None,
    ) -> list[Any]: ...

    async def create(self, obj: T) -> T: ...

    async def update(self, obj: T) -> T: ...

    async def update_status(self, obj: T) -> T: ...

    async def delete(self, kind: KindRef, name: str, namespace: str | None = None) -> None: ...

    async def delete_all_of(
        self, kind: KindRef, namespace: str | None = None, selector: Selector | None = None
    ) -> int: ...

    async def server_version(self) -> tuple[int, int]: ...


@dataclass(frozen=True)
class WatchEvent:
    type: str  # ADDED | MODIFIED | DELETED
    object: KubeObject


@runtime_checkable
class WatchableStore(Protocol):
    def subscribe(self) -> asyncio.Queue[WatchEvent]: ...

    def unsubscribe(self, queue: asyncio.Queue[WatchEvent]) -> None: ...


@dataclass(frozen=True)
class Operation:
    verb: str
    kind: str
    namespace: str | None
    name: str


# ── In-memory provider (dev/test) ─────────────────────────────────────────────

class InMemoryObjectStore:
    """
    Versioned in-memory store with the same contract as the cluster:
    - update/update_status reject stale resource versions (ConflictError)
    - update never touches status; update_status only touches status
    - deleting an object garbage-collects everything it owns
    NOT suitable for production. Use for tests and local dev only.
    """

    def __init__(self, scheme: Scheme, cluster_version: tuple[int, int] = (1, 30)) -> None:
        self.scheme = scheme
        self.cluster_version = cluster_version
        self.journal: list[Operation] = []
        self._objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._version = 0
        self._faults: list[tuple[str, str, str | None, TenancyError]] = []
        self._subscribers: list[asyncio.Queue[WatchEvent]] = []

    # ── Test hooks ───────────────────────────────────────────────────────────

    def inject_fault(
        self, verb: str, kind: KindRef, error: TenancyError,
        name: str | None = None, times: int = 1,
    ) -> None:
        """Make the next `times` matching calls raise `error`."""
        info = self.scheme.info(kind)
        for _ in range(times):
            self._faults.append((verb, info.kind, name, error))

    def writes(self, kind: KindRef | None = None) -> list[Operation]:
        """Journal entries for mutating calls, optionally filtered by kind."""
        key = self.scheme.info(kind).kind if kind is not None else None
        return [op for op in self.journal if key is None or op.kind == key]

    def subscribe(self) -> asyncio.Queue[WatchEvent]:
        queue: asyncio.Queue[WatchEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[WatchEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    # ── Reads ────────────────────────────────────────────────────────────────

    async def server_version(self) -> tuple[int, int]:
        return self.cluster_version

    async def get(self, kind: KindRef, name: str, namespace: str | None = None) -> Any:
        await asyncio.sleep(0)
        info = self.scheme.info(kind)
        self._raise_fault("get", info, name)
        raw = self._objects.get(self._key(info, name, namespace))
        if raw is None:
            raise NotFoundError(
                user_message=f"{info.kind} {_qualified(name, namespace)} not found.",
                kind=info.kind, name=name, namespace=namespace,
            )
        return info.model.model_validate(raw)

    async def list(
        self,
        kind: KindRef,
        namespace: str | None = None,
        selector: Selector | None = None,
        field: FieldMatch | None = None,
    ) -> list[Any]:
        await asyncio.sleep(0)
        info = self.scheme.info(kind)
        self._raise_fault("list", info, None)
        items = []
        for (k, ns, _), raw in sorted(self._objects.items()):
            if k != info.kind:
                continue
            if namespace is not None and ns != namespace:
                continue
            obj = info.model.model_validate(raw)
            if selector is not None and not selector.matches(obj.metadata.labels):
                continue
            if field is not None and field[1] not in self.scheme.index_values(obj, field[0]):
                continue
            items.append(obj)
        return items

    # ── Writes ───────────────────────────────────────────────────────────────

    async def create(self, obj: T) -> T:
        await asyncio.sleep(0)
        info = self.scheme.info(obj)
        self._raise_fault("create", info, obj.name)
        key = self._key(info, obj.name, obj.namespace)
        if key in self._objects:
            raise AlreadyExistsError(
                user_message=f"{info.kind} {_qualified(obj.name, obj.namespace)} already exists.",
            )
        stored = obj.model_copy(deep=True)
        stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
        stored.metadata.resource_version = self._next_version()
        self._objects[key] = stored.to_manifest()
        self._record("create", info, stored, "ADDED")
        return stored

    async def update(self, obj: T) -> T:
        await asyncio.sleep(0)
        info = self.scheme.info(obj)
        self._raise_fault("update", info, obj.name)
        key, current = self._current(info, obj)
        stored = obj.model_copy(deep=True)
        stored.metadata.uid = current["metadata"].get("uid")
        stored.metadata.resource_version = self._next_version()
        raw = stored.to_manifest()
        if info.has_status:
            raw["status"] = current.get("status", {})
        self._objects[key] = raw
        self._record("update", info, stored, "MODIFIED")
        return info.model.model_validate(raw)

    async def update_status(self, obj: T) -> T:
        await asyncio.sleep(0)
        info = self.scheme.info(obj)
        self._raise_fault("update_status", info, obj.name)
        key, current = self._current(info, obj)
        raw = dict(current)
        raw["status"] = obj.to_manifest().get("status", {})
        raw["metadata"] = dict(current["metadata"], resourceVersion=self._next_version())
        self._objects[key] = raw
        stored = info.model.model_validate(raw)
        self._record("update_status", info, stored, "MODIFIED")
        return stored

    async def delete(self, kind: KindRef, name: str, namespace: str | None = None) -> None:
        await asyncio.sleep(0)
        info = self.scheme.info(kind)
        self._raise_fault("delete", info, name)
        key = self._key(info, name, namespace)
        raw = self._objects.pop(key, None)
        if raw is None:
            raise NotFoundError(user_message=f"{info.kind} {_qualified(name, namespace)} not found.")
        stored = info.model.model_validate(raw)
        self._record("delete", info, stored, "DELETED")
        self._collect_garbage(stored.metadata.uid)

    async def delete_all_of(
        self, kind: KindRef, namespace: str | None = None, selector: Selector | None = None
    ) -> int:
        matched = await self.list(kind, namespace=namespace, selector=selector)
        for obj in matched:
            await self.delete(kind, obj.name, obj.namespace)
        return len(matched)

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _key(info: KindInfo, name: str, namespace: str | None) -> tuple[str, str, str]:
        return (info.kind, (namespace or "") if info.namespaced else "", name)

    def _current(self, info: KindInfo, obj: KubeObject) -> tuple[tuple[str, str, str], dict[str, Any]]:
        key = self._key(info, obj.name, obj.namespace)
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(
                user_message=f"{info.kind} {_qualified(obj.name, obj.namespace)} not found.",
            )
        expected = obj.metadata.resource_version
        if expected is not None and expected != current["metadata"].get("resourceVersion"):
            raise ConflictError(
                user_message=f"{info.kind} {_qualified(obj.name, obj.namespace)} has been modified.",
                expected=expected,
                actual=current["metadata"].get("resourceVersion"),
            )
        return key, current

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _raise_fault(self, verb: str, info: KindInfo, name: str | None) -> None:
        for i, (f_verb, f_kind, f_name, error) in enumerate(self._faults):
            if f_verb == verb and f_kind == info.kind and (f_name is None or f_name == name):
                del self._faults[i]
                raise error

    def _record(self, verb: str, info: KindInfo, obj: KubeObject, event: str) -> None:
        self.journal.append(Operation(verb, info.kind, obj.namespace, obj.name))
        for queue in self._subscribers:
            queue.put_nowait(WatchEvent(event, obj))

    def _collect_garbage(self, owner_uid: str | None) -> None:
        if not owner_uid:
            return
        dependents = [
            key for key, raw in self._objects.items()
            if any(ref.get("uid") == owner_uid for ref in raw["metadata"].get("ownerReferences", []))
        ]
        for key in dependents:
            raw = self._objects.pop(key, None)
            if raw is None:
                continue
            info = self.scheme.info(key[0])
            stored = info.model.model_validate(raw)
            self._record("delete", info, stored, "DELETED")
            self._collect_garbage(stored.metadata.uid)


# ── Kubernetes provider ───────────────────────────────────────────────────────

class KubernetesObjectStore:
    """
    Cluster-backed store over the `kubernetes` dynamic client.
    The client is synchronous, so every call runs in a worker thread.
    Field-index matches are evaluated client side with the scheme indexers.
    Requires: pip install tenantplane[kubernetes]
    """

    def __init__(self, scheme: Scheme, kubeconfig: str | None = None) -> None:
        try:
            import urllib3
            from kubernetes import client, config
            from kubernetes.config.config_exception import ConfigException
            from kubernetes.dynamic import DynamicClient
            from kubernetes.dynamic import exceptions as dynamic_exceptions
        except ImportError as exc:
            raise ConfigurationError(
                user_message="The kubernetes store backend requires the 'kubernetes' package.",
            ) from exc

        try:
            if kubeconfig:
                config.load_kube_config(config_file=kubeconfig)
            else:
                try:
                    config.load_incluster_config()
                except ConfigException:
                    config.load_kube_config()
        except ConfigException as exc:
            raise ConfigurationError(
                user_message="Cannot load cluster credentials.", detail=str(exc),
            ) from exc

        self.scheme = scheme
        self._client = DynamicClient(client.ApiClient())
        self._errors = dynamic_exceptions
        self._transport_errors = (urllib3.exceptions.HTTPError,)
        self._resources: dict[str, Any] = {}

    def _resource(self, info: KindInfo) -> Any:
        if info.kind not in self._resources:
            self._resources[info.kind] = self._client.resources.get(
                api_version=info.api_version, kind=info.kind
            )
        return self._resources[info.kind]

    async def _call(self, fn: Callable[..., Any], *, creating: bool = False, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except self._errors.NotFoundError as exc:
            raise NotFoundError(user_message="Object not found.", detail=str(exc)) from exc
        except self._errors.ConflictError as exc:
            if creating:
                raise AlreadyExistsError(user_message="Object already exists.", detail=str(exc)) from exc
            raise ConflictError(user_message="Object has been modified.", detail=str(exc)) from exc
        except self._errors.DynamicApiError as exc:
            raise UpstreamError(user_message="Cluster API call failed.", detail=str(exc)) from exc
        except self._transport_errors as exc:
            raise UpstreamError(user_message="Cluster API is unreachable.", detail=str(exc)) from exc

    def _decode(self, info: KindInfo, raw: dict[str, Any]) -> Any:
        raw.setdefault("apiVersion", info.api_version)
        raw.setdefault("kind", info.kind)
        return info.model.model_validate(raw)

    async def server_version(self) -> tuple[int, int]:
        version = await self._call(lambda: self._client.version["kubernetes"])
        # minor carries a "+" on some managed distributions
        return int(version["major"]), int(re.sub(r"\D", "", version["minor"]))

    async def get(self, kind: KindRef, name: str, namespace: str | None = None) -> Any:
        info = self.scheme.info(kind)
        result = await self._call(self._resource(info).get, name=name, namespace=namespace)
        return self._decode(info, result.to_dict())

    async def list(
        self,
        kind: KindRef,
        namespace: str | None = None,
        selector: Selector | None = None,
        field: FieldMatch | None = None,
    ) -> list[Any]:
        info = self.scheme.info(kind)
        kwargs: dict[str, Any] = {"namespace": namespace}
        if selector is not None and not selector.empty():
            kwargs["label_selector"] = str(selector)
        result = await self._call(self._resource(info).get, **kwargs)
        items = [self._decode(info, raw) for raw in result.to_dict().get("items", [])]
        if field is not None:
            items = [o for o in items if field[1] in self.scheme.index_values(o, field[0])]
        return sorted(items, key=lambda o: (o.namespace or "", o.name))

    async def create(self, obj: T) -> T:
        info = self.scheme.info(obj)
        result = await self._call(
            self._resource(info).create, creating=True,
            body=obj.to_manifest(), namespace=obj.namespace,
        )
        return self._decode(info, result.to_dict())

    async def update(self, obj: T) -> T:
        info = self.scheme.info(obj)
        result = await self._call(
            self._resource(info).replace, body=obj.to_manifest(), namespace=obj.namespace,
        )
        return self._decode(info, result.to_dict())

    async def update_status(self, obj: T) -> T:
        info = self.scheme.info(obj)
        result = await self._call(
            self._resource(info).status.replace, body=obj.to_manifest(), namespace=obj.namespace,
        )
        return self._decode(info, result.to_dict())

    async def delete(self, kind: KindRef, name: str, namespace: str | None = None) -> None:
        info = self.scheme.info(kind)
        await self._call(self._resource(info).delete, name=name, namespace=namespace)

    async def delete_all_of(
        self, kind: KindRef, namespace: str | None = None, selector: Selector | None = None
    ) -> int:
        matched = await self.list(kind, namespace=namespace, selector=selector)
        for obj in matched:
            try:
                await self.delete(kind, obj.name, obj.namespace)
            except NotFoundError:
                continue
        return len(matched)


# ── Provider factory ──────────────────────────────────────────────────────────

def new_store(scheme: Scheme, backend: str = "memory", kubeconfig: str | None = None) -> ObjectStore:
    """Build the store for the configured backend. Called once at startup."""
    backend = backend.lower()
    if backend in ("memory", "mock"):
        return InMemoryObjectStore(scheme)
    if backend == "kubernetes":
        return KubernetesObjectStore(scheme, kubeconfig=kubeconfig)
    raise ConfigurationError(
        user_message=f"Unknown store backend {backend!r}. Supported: memory, kubernetes",
    )


# ── Object helpers ────────────────────────────────────────────────────────────

class OperationResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


async def create_or_update(
    store: ObjectStore, obj: T, mutate: Callable[[T], None]
) -> tuple[OperationResult, T]:
    """
    Fetch `obj` by name; create it after `mutate` when absent, otherwise
    apply `mutate` to the stored copy and write only when something changed.
    """
    try:
        existing = await store.get(type(obj), obj.name, obj.namespace)
    except NotFoundError:
        desired = obj.model_copy(deep=True)
        mutate(desired)
        return OperationResult.CREATED, await store.create(desired)

    desired = existing.model_copy(deep=True)
    mutate(desired)
    if desired.to_manifest() == existing.to_manifest():
        return OperationResult.UNCHANGED, existing
    return OperationResult.UPDATED, await store.update(desired)


def set_controller_reference(owner: KubeObject, obj: KubeObject) -> None:
    """
    Make `owner` the controlling owner of `obj`. Raises AlreadyOwnedError when
    a different controller is already set.
    """
    ref = controller_reference(owner)
    refs = list(obj.metadata.owner_references)
    for i, existing in enumerate(refs):
        same = (
            existing.api_version.split("/")[0] == ref.api_version.split("/")[0]
            and existing.kind == ref.kind
            and existing.name == ref.name
        )
        if same:
            refs[i] = ref
            obj.metadata.owner_references = refs
            return
        if existing.controller:
            raise AlreadyOwnedError(
                user_message=(
                    f"{obj.kind} {obj.name} is already owned by "
                    f"{existing.kind} {existing.name}."
                ),
            )
    refs.append(ref)
    obj.metadata.owner_references = refs


def _qualified(name: str, namespace: str | None) -> str:
    return f"{namespace}/{name}" if namespace else name


__all__ = [
    "ObjectStore", "WatchableStore", "WatchEvent", "Operation",
    "InMemoryObjectStore", "KubernetesObjectStore", "new_store",
    "OperationResult", "create_or_update", "set_controller_reference",
]
