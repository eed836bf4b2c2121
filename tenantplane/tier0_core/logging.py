"""
tenantplane.tier0_core.logging
───────────────────────────────
Structured logs for the control plane. Every record carries the component
that emitted it (quota, rbac, admission, ...) and whatever the current
reconcile or admission request bound through structlog contextvars
(tenant, reconcile_id, uid).

Minimal stack: structlog (stdout JSON or console)
Configure via: TENANTPLANE_LOG_LEVEL, TENANTPLANE_LOG_FORMAT=json|console
"""
from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Client libraries that log every HTTP round trip at INFO.
_NOISY_LOGGERS = ("kubernetes.client.rest", "urllib3", "uvicorn.access")


# ── Processors ────────────────────────────────────────────────────────────────

def _add_component(logger: Any, method: str, event_dict: dict) -> dict:
    """tenantplane.tier3_platform.quota -> component=quota"""
    name = event_dict.get("logger") or ""
    if name.startswith("tenantplane") and "component" not in event_dict:
        event_dict["component"] = name.rsplit(".", 1)[-1]
    return event_dict


def _renderer(fmt: str) -> Any:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


# ── Configuration ─────────────────────────────────────────────────────────────

def _configure_structlog(level: str | None = None, fmt: str | None = None) -> None:
    log_level = (level or os.getenv("TENANTPLANE_LOG_LEVEL", "INFO")).upper()
    log_format = (fmt or os.getenv("TENANTPLANE_LOG_FORMAT", "json")).lower()
    numeric = getattr(logging, log_level, logging.INFO)

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_component,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn and the kubernetes client log through stdlib; render them the same way.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(log_format),
        ],
    ))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))


# ── Public API ────────────────────────────────────────────────────────────────

_configured = False


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Apply logging settings explicitly. Called once by the manager at startup."""
    global _configured
    _configure_structlog(level, fmt)
    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger bound to the given name.

    Usage:
        log = get_logger(__name__)
        log.info("quota.pool_exhausted", tenant="t1", index=0, resource="pods")
    """
    global _configured
    if not _configured:
        _configure_structlog()
        _configured = True
    return structlog.get_logger(name or __name__)


@contextmanager
def bound_context(**fields: Any) -> Iterator[None]:
    """
    Add fields to every log line emitted by the current task until the block
    exits; fields bound by an enclosing block are restored afterwards.
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield


__all__ = ["configure_logging", "get_logger", "bound_context"]
