from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from msp.domain.models import AuditLog, now_utc
from msp.infra.db import engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
# Reads that expose billing or asset inventory in bulk are audited too.
AUDITED_READ_PATH_KEYWORDS = ("/asset-report", "/reconciliation/reports")
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
UNAUDITED_PATHS = {"/healthz", "/readyz"}

AREA_BY_PATH_SEGMENT = {
    "identity": "identity",
    "companies": "company",
    "asset-types": "asset_type",
    "assets": "asset",
    "billing": "billing",
    "usage": "usage",
    "credits": "credit",
    "reconciliation": "reconciliation",
}
OPERATION_BY_METHOD = {
    "GET": "read",
    "POST": "create",
    "PUT": "replace",
    "PATCH": "update",
    "DELETE": "delete",
}

logger = logging.getLogger(__name__)


def write_audit_log(
    *,
    tenant_id: str,
    actor_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
    session: Session | None = None,
) -> AuditLog:
    """Persist one audit row.

    With ``session`` the row joins the caller's transaction and is committed
    with the credit or reconciliation write it describes. Without it the row is
    written on its own connection.
    """
    log = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        detail=detail or {},
    )
    if session is not None:
        session.add(log)
        return log
    with Session(engine) as own_session:
        own_session.add(log)
        own_session.commit()
    return log


def classify_request(method: str, route_path: str) -> tuple[str | None, str]:
    """Name a request after the business area it touches.

    ``POST /api/companies/{company_id}/billing-plans`` becomes
    ``company.billing_plans.create``. Paths outside ``/api`` have no area.
    """
    segments = [segment for segment in route_path.strip("/").split("/") if segment]
    if len(segments) < 2 or segments[0] != "api":
        return None, f"{method}:{route_path}"
    area = AREA_BY_PATH_SEGMENT.get(segments[1])
    if area is None:
        return None, f"{method}:{route_path}"
    literals = [segment for segment in segments[2:] if not segment.startswith("{")]
    operation = OPERATION_BY_METHOD.get(method, method.lower())
    if literals:
        return area, f"{area}.{literals[-1].replace('-', '_')}.{operation}"
    return area, f"{area}.{operation}"


def _merge_detail(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        current = merged.get(key)
        merged[key] = _merge_detail(current, value) if isinstance(value, dict) and isinstance(current, dict) else value
    return merged


def _outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    return "rejected" if status_code >= 400 else "success"


def should_audit_request(method: str, path: str) -> bool:
    if path in UNAUDITED_PATHS:
        return False
    return method in WRITE_METHODS or any(keyword in path for keyword in AUDITED_READ_PATH_KEYWORDS)


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Let a route name its own action, resource or extra detail for the audit row."""
    current = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    context: dict[str, Any] = dict(current) if isinstance(current, dict) else {}
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        previous = context.get("detail")
        context["detail"] = _merge_detail(previous, detail) if isinstance(previous, dict) else detail
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


def _audit_context(request: Request) -> dict[str, Any]:
    context = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    return context if isinstance(context, dict) else {}


class AuditMiddleware(BaseHTTPMiddleware):
    """Write a who/when/where/what/result row for writes and bulk reads."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method
        context = _audit_context(request)
        explicit = any(key in context for key in ("action", "resource", "detail"))
        if path in UNAUDITED_PATHS or not (explicit or should_audit_request(method, path)):
            return response

        claims = getattr(request.state, "claims", {})
        tenant_id = claims.get("tenant_id", "system")
        actor_id = claims.get("sub")
        route_path = getattr(request.scope.get("route"), "path", path)
        area, derived_action = classify_request(method, route_path)
        action = context["action"] if isinstance(context.get("action"), str) else derived_action
        resource = context["resource"] if isinstance(context.get("resource"), str) else path

        detail: dict[str, Any] = {
            "who": {"tenant_id": tenant_id, "actor_id": actor_id},
            "when": {"request_ts": now_utc().isoformat()},
            "where": {
                "path": path,
                "route": route_path,
                "query": request.url.query,
                "client_ip": request.client.host if request.client is not None else None,
            },
            "what": {"area": area, "action": action, "resource": resource, "method": method},
            "result": {"status_code": response.status_code, "outcome": _outcome(response.status_code)},
        }
        if isinstance(context.get("detail"), dict):
            detail = _merge_detail(detail, context["detail"])

        try:
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action=action,
                resource=resource,
                method=method,
                status_code=response.status_code,
                detail=detail,
            )
        except Exception:
            logger.exception("audit write failed for %s %s", method, path)
        return response
