from __future__ import annotations

import logging

from fastapi import Depends, Request

from adminguard.errors import AccessDenied
from adminguard.observability.audit_log import ACCESS_DENIED, LOG_PAGE_ACCESS_DENIED
from adminguard.runtime import Runtime
from adminguard.services.access import AdminIdentity
from adminguard.shared.request_meta import DEFAULT_CLIENT_IP

_log = logging.getLogger(__name__)

AUDIT_PREFIX = "/admin/api/audit"


def get_app_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_identity(request: Request) -> AdminIdentity:
    identity = getattr(request.state, "admin_identity", None)
    return identity if isinstance(identity, AdminIdentity) else AdminIdentity.anonymous()


def get_client_ip(request: Request) -> str:
    return getattr(request.state, "client_ip", None) or DEFAULT_CLIENT_IP


def require_operator(
    request: Request,
    runtime: Runtime = Depends(get_app_runtime),
    identity: AdminIdentity = Depends(get_identity),
    ip: str = Depends(get_client_ip),
) -> AdminIdentity:
    """Operator actions: authenticated administrator whose IP is not blacklisted."""
    if not identity.is_administrator:
        raise AccessDenied("not_admin")
    if runtime.access.is_blocked_admin(identity, ip):
        path = request.url.path
        event = LOG_PAGE_ACCESS_DENIED if path.startswith(AUDIT_PREFIX) else ACCESS_DENIED
        runtime.audit.log(event, path, ip=ip, user=identity.user_login)
        raise AccessDenied("blocked_ip")
    return identity
