from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from adminguard.dependencies import get_app_runtime, require_operator
from adminguard.runtime import Runtime

router = APIRouter(
    prefix="/admin/api",
    tags=["admin-policy"],
    dependencies=[Depends(require_operator)],
)


class PolicyStatus(BaseModel):
    version: Optional[str] = None
    last_fetched_at: Optional[str] = None
    source: Optional[str] = None
    cached: bool = False
    config: Optional[Dict[str, Any]] = None
    missing_required_plugins: List[str] = []


class RefreshResult(BaseModel):
    version: str
    source: Optional[str] = None
    config: Dict[str, Any]


@router.get("/policy", response_model=PolicyStatus)
def policy_status(runtime: Runtime = Depends(get_app_runtime)) -> PolicyStatus:
    status = runtime.manager.status()
    return PolicyStatus(
        **status.to_dict(),
        missing_required_plugins=runtime.required_plugins.missing(),
    )


@router.post("/policy/refresh", response_model=RefreshResult)
def refresh_policy(runtime: Runtime = Depends(get_app_runtime)) -> RefreshResult:
    config = runtime.manager.refresh()
    source = runtime.manager.last_source
    return RefreshResult(
        version=config.version,
        source=source.value if source else None,
        config=config.to_dict(),
    )
