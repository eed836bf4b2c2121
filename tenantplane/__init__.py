"""
tenantplane
───────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from tenantplane._registry import build_scheme, Scheme, OWNER_INDEX, OWNER_KIND_INDEX
from tenantplane.tier0_core.logging import get_logger, configure_logging
from tenantplane.tier0_core.errors import (
    TenancyError,
    NotFoundError,
    AlreadyExistsError,
    ConflictError,
    AlreadyOwnedError,
    ValidationError,
    ForbiddenError,
    UpstreamError,
    ConfigurationError,
    PartialFailureError,
)
from tenantplane.tier0_core.config import get_config, load_config, ManagerConfig
from tenantplane.tier0_core.resources import (
    Tenant,
    TenantSpec,
    TenantStatus,
    OwnerSpec,
    Namespace,
    NetworkPolicy,
    LimitRange,
    ResourceQuota,
    ResourceQuotaSpec,
    RoleBinding,
    ObjectMeta,
    Service,
    Endpoints,
    EndpointSlice,
    ServicesMetadata,
)
from tenantplane.tier0_core.store import (
    ObjectStore,
    InMemoryObjectStore,
    KubernetesObjectStore,
    new_store,
    create_or_update,
    set_controller_reference,
    OperationResult,
)
from tenantplane.tier0_core.tasks import fan_out, WorkQueue

from tenantplane.tier1_runtime.retry import retry_on_conflict, retry_policy, Backoff

from tenantplane.tier3_platform.reconcile import TenantReconciler
from tenantplane.tier3_platform.services import ServiceMetadataSync
from tenantplane.tier3_platform.admission import OwnerAssignment, AdmissionDecision, validate_tenant_name
from tenantplane.tier3_platform.webhook import create_app

__version__ = "0.1.0"
__all__ = [
    # registry
    "build_scheme", "Scheme", "OWNER_INDEX", "OWNER_KIND_INDEX",
    # logging
    "get_logger", "configure_logging",
    # errors
    "TenancyError", "NotFoundError", "AlreadyExistsError", "ConflictError",
    "AlreadyOwnedError", "ValidationError", "ForbiddenError", "UpstreamError",
    "ConfigurationError", "PartialFailureError",
    # config
    "get_config", "load_config", "ManagerConfig",
    # resources
    "Tenant", "TenantSpec", "TenantStatus", "OwnerSpec", "Namespace",
    "NetworkPolicy", "LimitRange", "ResourceQuota", "ResourceQuotaSpec",
    "RoleBinding", "ObjectMeta", "Service", "Endpoints", "EndpointSlice",
    "ServicesMetadata",
    # store
    "ObjectStore", "InMemoryObjectStore", "KubernetesObjectStore", "new_store",
    "create_or_update", "set_controller_reference", "OperationResult",
    # tasks
    "fan_out", "WorkQueue",
    # retry
    "retry_on_conflict", "retry_policy", "Backoff",
    # reconcile
    "TenantReconciler", "ServiceMetadataSync",
    # admission
    "OwnerAssignment", "AdmissionDecision", "validate_tenant_name", "create_app",
]
