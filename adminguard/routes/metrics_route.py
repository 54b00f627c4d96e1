from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def prometheus_metrics(request: Request) -> PlainTextResponse:
    """Prometheus exposition of the default registry."""
    if not request.app.state.runtime.settings.METRICS_ENABLED:
        raise HTTPException(status_code=404, detail="metrics disabled")
    body = generate_latest(REGISTRY).decode("utf-8")
    return PlainTextResponse(content=body, media_type=CONTENT_TYPE_LATEST)
