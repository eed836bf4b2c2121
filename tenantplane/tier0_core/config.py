"""
tenantplane.tier0_core.config
──────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables (prefix TENANTPLANE_) → explicit overrides from the CLI.
All fields are typed via Pydantic. A bad protected-namespace regex raises
ConfigurationError at startup, not during admission.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Any

from pydantic import Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tenantplane.tier0_core.errors import ConfigurationError

GROUP = "tenantplane.io"


class ManagerConfig(BaseSettings):
    """
    Typed manager configuration. Every field can be set through a
    TENANTPLANE_<FIELD> environment variable or a CLI flag.
    """

    model_config = SettingsConfigDict(
        env_prefix="TENANTPLANE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Process ───────────────────────────────────────────────────────────────
    environment: str = "development"
    metrics_addr: str = ":8080"
    enable_leader_election: bool = False

    # ── Tenancy policy ────────────────────────────────────────────────────────
    owner_group: str = GROUP
    force_tenant_prefix: bool = False
    protected_namespace_regex: str = ""

    # ── Store ─────────────────────────────────────────────────────────────────
    store_backend: str = "memory"
    kubeconfig: str | None = None

    # ── Reconciliation ────────────────────────────────────────────────────────
    reconcile_workers: int = Field(default=4, ge=1)
    fanout_workers: int = Field(default=8, ge=1)
    conflict_retry_attempts: int = Field(default=4, ge=1)
    resync_period_seconds: float = Field(default=30.0, gt=0)

    # ── Admission webhooks ────────────────────────────────────────────────────
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 9443
    webhook_cert_file: str | None = None
    webhook_key_file: str | None = None

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        allowed = {"memory", "kubernetes"}
        if v.lower() not in allowed:
            raise ValueError(f"store_backend must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("protected_namespace_regex")
    @classmethod
    def validate_protected_regex(cls, v: str) -> str:
        if v:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"cannot compile protected namespace regex {v!r}: {exc}") from exc
        return v

    @property
    def protected_namespace_pattern(self) -> re.Pattern[str] | None:
        if not self.protected_namespace_regex:
            return None
        return re.compile(self.protected_namespace_regex)

    @property
    def metrics_port(self) -> int:
        _, _, port = self.metrics_addr.rpartition(":")
        return int(port)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_config(**overrides: Any) -> ManagerConfig:
    """
    Build a ManagerConfig from the environment plus explicit overrides.
    Raises ConfigurationError instead of a raw pydantic error.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return ManagerConfig(**values)
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(loc) for loc in err["loc"]): err["msg"]
            for err in exc.errors()
        }
        raise ConfigurationError(
            user_message="Invalid manager configuration.",
            detail=f"invalid manager configuration: {fields}",
            fields=fields,
        ) from exc


@lru_cache(maxsize=1)
def get_config() -> ManagerConfig:
    """
    Return the singleton manager config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return load_config()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["GROUP", "ManagerConfig", "load_config", "get_config"]
