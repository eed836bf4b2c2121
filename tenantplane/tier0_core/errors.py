"""
tenantplane.tier0_core.errors
──────────────────────────────
Error taxonomy for the control plane. Every error carries a stable
machine-readable code, a message that is safe to show to a requester, and
internal detail for logs.

Conflicts are the only class resolved locally (see tier1_runtime.retry);
everything else propagates up to the reconcile driver, which logs it and
hands it back to the work queue for a re-queue.
"""
from __future__ import annotations

from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class TenancyError(Exception):
    """
    Base class for all control plane errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface in an admission response
    - detail: internal context, never shown to requesters
    - status_code: HTTP status code used by the admission endpoints
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


# ── Store errors ──────────────────────────────────────────────────────────────

class NotFoundError(TenancyError):
    """Requested object does not exist in the store."""
    status_code = 404
    code = "not_found"


class AlreadyExistsError(TenancyError):
    """Create was issued for an object that is already stored."""
    status_code = 409
    code = "already_exists"


class ConflictError(TenancyError):
    """Optimistic concurrency failure: the object changed since it was read."""
    status_code = 409
    code = "conflict"


class AlreadyOwnedError(TenancyError):
    """The object is already controlled by a different owner."""
    status_code = 409
    code = "already_owned"


class UpstreamError(TenancyError):
    """The backing store could not be reached or answered with an error."""
    status_code = 502
    code = "upstream_error"


# ── Request errors ────────────────────────────────────────────────────────────

class ForbiddenError(TenancyError):
    """Requester is authenticated but not allowed to perform the action."""
    status_code = 403
    code = "forbidden"


class ValidationError(TenancyError):
    """Input validation failure."""
    status_code = 422
    code = "validation_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Validation failed.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


# ── Process errors ────────────────────────────────────────────────────────────

class ConfigurationError(TenancyError):
    """Misconfiguration detected at startup. Not recoverable in-process."""
    status_code = 500
    code = "configuration_error"


class PartialFailureError(TenancyError):
    """
    One or more units of a concurrent fan-out failed. The individual errors
    are kept for logging, but callers only ever see this single failure so
    the whole operation is re-run from a fresh read.
    """
    status_code = 500
    code = "partial_failure"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "A concurrent update has failed.",
        errors: list[BaseException] | None = None,
        **metadata: Any,
    ) -> None:
        self.errors = list(errors or [])
        super().__init__(code, user_message, **metadata)


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, NotFoundError)


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ConflictError)


__all__ = [
    "TenancyError", "NotFoundError", "AlreadyExistsError", "ConflictError",
    "AlreadyOwnedError", "UpstreamError", "ForbiddenError", "ValidationError",
    "ConfigurationError", "PartialFailureError", "is_not_found", "is_conflict",
]
