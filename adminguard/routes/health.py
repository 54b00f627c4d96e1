from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from adminguard.dependencies import get_app_runtime
from adminguard.runtime import Runtime

router = APIRouter(tags=["ops"])


@router.get("/health")
def health(runtime: Runtime = Depends(get_app_runtime)) -> Dict[str, Any]:
    source = runtime.manager.last_source
    return {
        "status": "ok",
        "service": runtime.settings.APP_NAME,
        "version": runtime.settings.VERSION,
        "policy": {
            "version": runtime.store.version(),
            "source": source.value if source else None,
        },
    }
