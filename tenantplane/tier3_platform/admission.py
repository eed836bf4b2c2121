"""
tenantplane.tier3_platform.admission
─────────────────────────────────────
Admission-time decisions.

OwnerAssignment binds a namespace being created to exactly one tenant,
evaluated in strict precedence order (first match wins):

  0. protected name       → deny
  1. tenant label present → that tenant, requester must own it
  2. forced prefix mode   → tenant named by the prefix before the first "-",
                            requester must own it
  3. a tenant owned by the requesting User (or ServiceAccount)
  4. a tenant owned by one of the requester's groups, in request order
  5. nothing matched      → deny

Once a tenant is resolved the namespace must carry the "<tenant>-" prefix
(forced prefix mode) and the tenant must be below its namespace quota. The
binding is a JSON patch adding the tenant controller reference to
metadata.ownerReferences; the namespace collector discovers it later.

validate_tenant_name rejects tenant names that are not DNS-label shaped.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import Field

from tenantplane._registry import OWNER_KIND_INDEX
from tenantplane.tier0_core import labels
from tenantplane.tier0_core.errors import (
    ForbiddenError,
    NotFoundError,
    TenancyError,
    ValidationError,
)
from tenantplane.tier0_core.logging import get_logger
from tenantplane.tier0_core.resources import Namespace, Tenant, _Model
from tenantplane.tier0_core.store import ObjectStore, set_controller_reference
from tenantplane.tier1_runtime.validate import validate_input

log = get_logger(__name__)

TENANT_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

NOT_AN_OWNER = "Cannot assign the desired namespace to a non-owned Tenant"
NO_TENANT = "You do not have any Tenant assigned: please, reach out the system administrators"
QUOTA_EXCEEDED = "Cannot exceed Namespace quota: please, reach out the system administrators"


# ── Request / response models ─────────────────────────────────────────────────

class UserInfo(_Model):
    username: str = ""
    uid: str | None = None
    groups: list[str] = Field(default_factory=list)


class AdmissionRequest(_Model):
    uid: str
    kind: dict[str, str] = Field(default_factory=dict)
    name: str | None = None
    namespace: str | None = None
    operation: Literal["CREATE", "UPDATE", "DELETE", "CONNECT"]
    user_info: UserInfo = Field(default_factory=UserInfo)
    object: dict[str, Any] | None = None


@dataclass
class AdmissionDecision:
    allowed: bool
    message: str = ""
    code: int = 200
    patch: list[dict[str, Any]] | None = None
    tenant: str | None = None

    @classmethod
    def allow(cls, patch: list[dict[str, Any]] | None = None, tenant: str | None = None) -> AdmissionDecision:
        return cls(allowed=True, patch=patch, tenant=tenant)

    @classmethod
    def deny(cls, message: str) -> AdmissionDecision:
        return cls(allowed=False, message=message, code=403)

    @classmethod
    def errored(cls, code: int, message: str) -> AdmissionDecision:
        return cls(allowed=False, message=message, code=code)

    @property
    def result(self) -> str:
        if self.allowed:
            return "patched" if self.patch else "allowed"
        return "denied" if self.code == 403 else "errored"


# ── Owner assignment ──────────────────────────────────────────────────────────

@dataclass
class OwnerAssignment:
    store: ObjectStore
    force_tenant_prefix: bool = False
    protected_pattern: re.Pattern[str] | None = None

    async def decide(self, request: AdmissionRequest) -> AdmissionDecision:
        if request.operation != "CREATE":
            return AdmissionDecision.allow()
        try:
            namespace = validate_input(Namespace, request.object or {})
        except ValidationError as exc:
            return AdmissionDecision.errored(400, exc.user_message)

        if self.protected_pattern is not None and self.protected_pattern.search(namespace.name):
            log.info("admission.protected_namespace", namespace=namespace.name)
            return AdmissionDecision.deny(
                f"Creating namespaces matching {self.protected_pattern.pattern!r} is forbidden"
            )

        try:
            tenant = await self._resolve(namespace, request.user_info)
            if tenant is None:
                return AdmissionDecision.deny(NO_TENANT)
            self._check_prefix(tenant, namespace)
            self._check_quota(tenant)
            patch = owner_reference_patch(tenant, namespace)
        except ForbiddenError as exc:
            log.info("admission.denied", namespace=namespace.name, reason=exc.user_message)
            return AdmissionDecision.deny(exc.user_message)
        except TenancyError as exc:
            log.warning("admission.errored", namespace=namespace.name, error=str(exc))
            return AdmissionDecision.errored(400, exc.user_message)

        log.info("admission.bound", namespace=namespace.name, bound_tenant=tenant.name)
        return AdmissionDecision.allow(patch=patch, tenant=tenant.name)

    async def _resolve(self, namespace: Namespace, user: UserInfo) -> Tenant | None:
        selected = namespace.metadata.labels.get(labels.TENANT_LABEL)
        if selected:
            return await self._owned(selected, user)

        if self.force_tenant_prefix:
            return await self._owned(namespace.name.split("-", 1)[0], user)

        tenant = await self._first_owned_by(_requester_kind(user.username), user.username)
        if tenant is not None:
            return tenant
        for group in user.groups:
            tenant = await self._first_owned_by("Group", group)
            if tenant is not None:
                return tenant
        return None

    async def _owned(self, name: str, user: UserInfo) -> Tenant:
        try:
            tenant: Tenant = await self.store.get(Tenant, name)
        except NotFoundError as exc:
            raise NotFoundError(user_message=f"Tenant {name!r} does not exist.") from exc
        if not tenant.is_owned_by(user.username, user.groups):
            raise ForbiddenError(user_message=NOT_AN_OWNER, tenant=name)
        return tenant

    async def _first_owned_by(self, kind: str, name: str) -> Tenant | None:
        if not name:
            return None
        tenants = await self.store.list(Tenant, field=(OWNER_KIND_INDEX, f"{kind}:{name}"))
        return tenants[0] if tenants else None

    def _check_prefix(self, tenant: Tenant, namespace: Namespace) -> None:
        if not self.force_tenant_prefix or namespace.name.startswith(f"{tenant.name}-"):
            return
        message = f"The namespace name must start with '{tenant.name}-' when forced tenant prefix is enabled"
        if namespace.name == tenant.name:
            message += f"; the bare tenant name is not a valid namespace name, use '{tenant.name}-<suffix>'"
        raise ForbiddenError(user_message=message)

    def _check_quota(self, tenant: Tenant) -> None:
        if tenant.status.size >= tenant.spec.namespace_quota:
            raise ForbiddenError(user_message=QUOTA_EXCEEDED, tenant=tenant.name)


def _requester_kind(username: str) -> str:
    return "ServiceAccount" if username.startswith("system:serviceaccount:") else "User"


def owner_reference_patch(tenant: Tenant, namespace: Namespace) -> list[dict[str, Any]]:
    """JSON patch that makes `tenant` the controller of `namespace`."""
    patched = namespace.model_copy(deep=True)
    set_controller_reference(tenant, patched)
    refs = [ref.to_manifest() for ref in patched.metadata.owner_references]
    return [{"op": "add", "path": "/metadata/ownerReferences", "value": refs}]


# ── Tenant name ───────────────────────────────────────────────────────────────

def validate_tenant_name(request: AdmissionRequest) -> AdmissionDecision:
    if request.operation != "CREATE":
        return AdmissionDecision.allow()
    name = (request.object or {}).get("metadata", {}).get("name") or request.name or ""
    if not TENANT_NAME_RE.match(name):
        return AdmissionDecision.deny("Tenant name had forbidden characters")
    return AdmissionDecision.allow()


__all__ = [
    "TENANT_NAME_RE", "UserInfo", "AdmissionRequest", "AdmissionDecision",
    "OwnerAssignment", "owner_reference_patch", "validate_tenant_name",
]
