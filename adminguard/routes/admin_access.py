from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from adminguard.dependencies import get_app_runtime
from adminguard.runtime import Runtime
from adminguard.services.access import AdminIdentity, current_admin_page

router = APIRouter(prefix="/admin/api", tags=["admin-access"])


class IdentityIn(BaseModel):
    user_login: str = ""
    roles: List[str] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    authenticated: bool = False


class EvaluateRequest(BaseModel):
    identity: IdentityIn
    ip: str
    page: Optional[str] = None
    script: Optional[str] = None
    page_param: Optional[str] = None


class EvaluateResponse(BaseModel):
    allowed: bool
    reason: str
    timestamp: float
    page: str
    blocked_admin: bool


@router.post("/access/evaluate", response_model=EvaluateResponse)
def evaluate_access(
    body: EvaluateRequest,
    runtime: Runtime = Depends(get_app_runtime),
) -> EvaluateResponse:
    """
    Decide an admin page request on behalf of the host. ``page`` wins over
    ``script``/``page_param`` when both are given.
    """
    identity = AdminIdentity.of(
        body.identity.user_login,
        roles=body.identity.roles,
        capabilities=body.identity.capabilities,
        authenticated=body.identity.authenticated,
    )
    page = body.page if body.page else current_admin_page(body.script or "", body.page_param)
    decision = runtime.access.evaluate(identity, body.ip, page)
    return EvaluateResponse(
        **decision.to_dict(),
        page=page,
        blocked_admin=runtime.access.is_blocked_admin(identity, body.ip),
    )
