from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from adminguard.dependencies import (
    get_app_runtime,
    get_client_ip,
    get_identity,
    require_operator,
)
from adminguard.errors import EnforcementError
from adminguard.runtime import Runtime
from adminguard.services.access import AdminIdentity

router = APIRouter(prefix="/admin/api", tags=["admin-enforcement"])


class EnforcementRunRequest(BaseModel):
    scheduled: bool = False


class EnforcementRunResponse(BaseModel):
    actions: List[Dict[str, str]]
    errors: List[str]
    skipped: bool


class PluginActivatedRequest(BaseModel):
    plugin_file: str


class ThemeSwitchedRequest(BaseModel):
    slug: str


class InstallCheckRequest(BaseModel):
    destination: str


class HookResponse(BaseModel):
    blocked: bool
    target: str
    fallback: Optional[str] = None


@router.post(
    "/enforcement/run",
    response_model=EnforcementRunResponse,
    dependencies=[Depends(require_operator)],
)
def run_enforcement(
    body: Optional[EnforcementRunRequest] = None,
    runtime: Runtime = Depends(get_app_runtime),
) -> EnforcementRunResponse:
    engine = runtime.enforcement
    report = engine.run_scheduled() if body and body.scheduled else engine.enforce()
    return EnforcementRunResponse(**report.to_dict())


@router.post("/hooks/plugin-activated", response_model=HookResponse)
def plugin_activated(
    body: PluginActivatedRequest,
    runtime: Runtime = Depends(get_app_runtime),
    identity: AdminIdentity = Depends(get_identity),
    ip: str = Depends(get_client_ip),
) -> HookResponse:
    blocked = runtime.enforcement.on_plugin_activated(
        body.plugin_file, ip=ip, user=identity.user_login or None
    )
    return HookResponse(blocked=blocked, target=body.plugin_file)


@router.post("/hooks/theme-switched", response_model=HookResponse)
def theme_switched(
    body: ThemeSwitchedRequest,
    runtime: Runtime = Depends(get_app_runtime),
    identity: AdminIdentity = Depends(get_identity),
    ip: str = Depends(get_client_ip),
) -> HookResponse:
    try:
        fallback = runtime.enforcement.on_theme_switched(
            body.slug, ip=ip, user=identity.user_login or None
        )
    except EnforcementError as exc:
        raise HTTPException(
            status_code=409,
            detail="theme is blocked but no fallback theme is installed",
        ) from exc
    return HookResponse(blocked=fallback is not None, target=body.slug, fallback=fallback)


@router.post("/hooks/install-check")
def install_check(
    body: InstallCheckRequest,
    runtime: Runtime = Depends(get_app_runtime),
    identity: AdminIdentity = Depends(get_identity),
    ip: str = Depends(get_client_ip),
) -> Dict[str, Any]:
    check = runtime.enforcement.filter_installation(
        body.destination, ip=ip, user=identity.user_login or None
    )
    return check.to_dict()
