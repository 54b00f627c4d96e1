from __future__ import annotations

from typing import Any, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from adminguard.services.access import AdminIdentity
from adminguard.shared.request_meta import client_ip


def _csv(value: str) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def identity_from_headers(headers: Any) -> AdminIdentity:
    user = (headers.get("X-Admin-User") or "").strip()
    if not user:
        return AdminIdentity.anonymous()
    return AdminIdentity.of(
        user,
        roles=_csv(headers.get("X-Admin-Roles") or ""),
        capabilities=_csv(headers.get("X-Admin-Capabilities") or ""),
    )


def resolve_identity(request: Request, *, trust_identity_headers: bool) -> AdminIdentity:
    """
    Identity is supplied by the host: an upstream component may set
    ``request.state.admin_identity``; otherwise the X-Admin-* headers are
    read when explicitly trusted; otherwise the caller is anonymous.
    """
    existing = getattr(request.state, "admin_identity", None)
    if isinstance(existing, AdminIdentity):
        return existing
    if trust_identity_headers:
        return identity_from_headers(request.headers)
    return AdminIdentity.anonymous()


class AdminContextMiddleware(BaseHTTPMiddleware):
    """Resolves caller identity and client IP once per request onto ``request.state``."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        settings = request.app.state.runtime.settings
        peer = getattr(request.client, "host", "") or ""
        request.state.client_ip = client_ip(
            request.headers, peer, trust_proxy_headers=settings.TRUST_PROXY_HEADERS
        )
        request.state.admin_identity = resolve_identity(
            request, trust_identity_headers=settings.TRUST_IDENTITY_HEADERS
        )
        return await call_next(request)
