from __future__ import annotations

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from adminguard.dependencies import get_app_runtime, require_operator
from adminguard.runtime import Runtime

router = APIRouter(
    prefix="/admin/api",
    tags=["admin-audit"],
    dependencies=[Depends(require_operator)],
)


class AuditItem(BaseModel):
    date: str
    type: str
    target: str
    ip: str
    user: str


class AuditListing(BaseModel):
    items: List[AuditItem]
    types: List[str]


@router.get("/audit", response_model=AuditListing)
def list_audit(
    type: Optional[str] = Query(None, max_length=64),
    runtime: Runtime = Depends(get_app_runtime),
) -> AuditListing:
    audit = runtime.audit
    # Newest first.
    items = [AuditItem(**e) for e in reversed(audit.entries(type or None))]
    return AuditListing(items=items, types=audit.event_types())


@router.get("/audit/download")
def download_audit(runtime: Runtime = Depends(get_app_runtime)) -> PlainTextResponse:
    filename = time.strftime("adminguard-log-%Y-%m-%d.txt", time.gmtime())
    return PlainTextResponse(
        content=runtime.audit.export_text(),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/audit/clear")
def clear_audit(runtime: Runtime = Depends(get_app_runtime)) -> dict:
    runtime.audit.clear()
    return {"cleared": True}
