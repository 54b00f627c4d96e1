from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from adminguard.dependencies import (
    get_app_runtime,
    get_client_ip,
    get_identity,
    require_operator,
)
from adminguard.runtime import Runtime
from adminguard.services.access import AdminIdentity

router = APIRouter(
    prefix="/admin/api",
    tags=["admin-plugins"],
    dependencies=[Depends(require_operator)],
)


@router.get("/plugins/required")
def required_plugins(runtime: Runtime = Depends(get_app_runtime)) -> Dict[str, Any]:
    service = runtime.required_plugins
    items: List[Dict[str, Any]] = service.status()
    return {"items": items, "missing": service.missing()}


@router.post("/plugins/bulk-install")
def bulk_install(
    runtime: Runtime = Depends(get_app_runtime),
    identity: AdminIdentity = Depends(get_identity),
    ip: str = Depends(get_client_ip),
) -> Dict[str, Any]:
    return runtime.required_plugins.bulk_install(ip=ip, user=identity.user_login).to_dict()


@router.post("/plugins/bulk-activate")
def bulk_activate(
    runtime: Runtime = Depends(get_app_runtime),
    identity: AdminIdentity = Depends(get_identity),
    ip: str = Depends(get_client_ip),
) -> Dict[str, Any]:
    return runtime.required_plugins.bulk_activate(ip=ip, user=identity.user_login).to_dict()
