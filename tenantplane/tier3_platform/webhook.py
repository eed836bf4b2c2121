"""
tenantplane.tier3_platform.webhook
───────────────────────────────────
Admission webhook server. Speaks admission.k8s.io/v1 AdmissionReview JSON:

  POST /mutate-v1-namespace-owner-reference   namespace owner assignment
  POST /validate-v1-tenant-name               tenant name syntax
  GET  /healthz

Served by uvicorn from the manager. Allowed-with-patch responses carry a
base64-encoded JSONPatch.

Usage:
    app = create_app(OwnerAssignment(store), on_assigned=queue.add)
"""
from __future__ import annotations

import base64
import json
import time
import uuid
from collections.abc import Callable
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route

from tenantplane.tier0_core.errors import ValidationError
from tenantplane.tier0_core.logging import bound_context, get_logger
from tenantplane.tier0_core.metrics import admission_decisions_total
from tenantplane.tier0_core.resources import _Model
from tenantplane.tier1_runtime.validate import validate_input
from tenantplane.tier3_platform.admission import (
    AdmissionDecision,
    AdmissionRequest,
    OwnerAssignment,
    validate_tenant_name,
)

log = get_logger(__name__)

ADMISSION_API_VERSION = "admission.k8s.io/v1"
NAMESPACE_OWNER_PATH = "/mutate-v1-namespace-owner-reference"
TENANT_NAME_PATH = "/validate-v1-tenant-name"


class AdmissionReview(_Model):
    api_version: str = ADMISSION_API_VERSION
    kind: str = "AdmissionReview"
    request: AdmissionRequest


def review_response(uid: str, decision: AdmissionDecision) -> dict[str, Any]:
    response: dict[str, Any] = {"uid": uid, "allowed": decision.allowed}
    if not decision.allowed:
        response["status"] = {"code": decision.code, "message": decision.message}
    if decision.patch:
        response["patchType"] = "JSONPatch"
        response["patch"] = base64.b64encode(json.dumps(decision.patch).encode()).decode()
    return {"apiVersion": ADMISSION_API_VERSION, "kind": "AdmissionReview", "response": response}


# ── ASGI middleware ───────────────────────────────────────────────────────────

class AdmissionLoggingMiddleware:
    """Binds a request id into the log context and logs every completed request."""

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())
        start = time.perf_counter()
        with bound_context(request_id=request_id):
            try:
                await self.app(scope, receive, send)
            finally:
                log.info(
                    "request_completed",
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                    path=scope.get("path", ""),
                    method=scope.get("method", ""),
                )


# ── App factory ───────────────────────────────────────────────────────────────

async def _read_review(request: Request) -> AdmissionReview:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise ValidationError(user_message="Request body is not valid JSON.") from exc
    return validate_input(AdmissionReview, payload)


def create_app(
    assignment: OwnerAssignment,
    on_assigned: Callable[[str], None] | None = None,
) -> Starlette:
    async def namespace_owner(request: Request) -> JSONResponse:
        try:
            review = await _read_review(request)
        except ValidationError as exc:
            return JSONResponse(exc.to_dict(), status_code=400)
        with bound_context(uid=review.request.uid):
            decision = await assignment.decide(review.request)
        admission_decisions_total(endpoint="namespace_owner", result=decision.result).inc()
        if decision.allowed and decision.tenant and on_assigned is not None:
            on_assigned(decision.tenant)
        return JSONResponse(review_response(review.request.uid, decision))

    async def tenant_name(request: Request) -> JSONResponse:
        try:
            review = await _read_review(request)
        except ValidationError as exc:
            return JSONResponse(exc.to_dict(), status_code=400)
        decision = validate_tenant_name(review.request)
        admission_decisions_total(endpoint="tenant_name", result=decision.result).inc()
        return JSONResponse(review_response(review.request.uid, decision))

    async def healthz(request: Request) -> PlainTextResponse:
        return PlainTextResponse("ok")

    return Starlette(
        routes=[
            Route(NAMESPACE_OWNER_PATH, namespace_owner, methods=["POST"]),
            Route(TENANT_NAME_PATH, tenant_name, methods=["POST"]),
            Route("/healthz", healthz, methods=["GET"]),
        ],
        middleware=[Middleware(AdmissionLoggingMiddleware)],
    )


__all__ = [
    "ADMISSION_API_VERSION", "NAMESPACE_OWNER_PATH", "TENANT_NAME_PATH",
    "AdmissionReview", "review_response", "AdmissionLoggingMiddleware", "create_app",
]
