# adminguard/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from adminguard import runtime as runtime_mod
from adminguard.errors import AccessDenied
from adminguard.middleware.admin_context import AdminContextMiddleware
from adminguard.middleware.request_id import RequestIDMiddleware
from adminguard.routes import (
    admin_access,
    admin_audit,
    admin_enforcement,
    admin_plugins,
    admin_policy,
    health,
    metrics_route,
)
from adminguard.runtime import Runtime
from adminguard.telemetry.logging import configure_root_logging

_log = logging.getLogger(__name__)


def _best_effort(msg: str, fn: Callable[[], Any]) -> None:
    """Invoke ``fn`` while ensuring failures are only logged at DEBUG."""
    try:
        fn()
    except Exception as exc:  # pragma: no cover - diagnostic only
        _log.debug("%s: %s", msg, exc)


async def _periodic(name: str, interval_s: int, fn: Callable[[], Any]) -> None:
    interval = max(int(interval_s), 1)
    while True:
        try:
            await asyncio.to_thread(fn)
        except asyncio.CancelledError:
            raise
        except Exception:
            _log.exception("%s iteration failed", name)
        await asyncio.sleep(interval)


def _start_task(app: FastAPI, name: str, interval_s: int, fn: Callable[[], Any]) -> None:
    """Start one periodic loop; ``interval_s=0`` disables it."""
    tasks = app.state.periodic_tasks
    if interval_s <= 0 or name in tasks:
        return
    tasks[name] = asyncio.create_task(_periodic(name, interval_s, fn))


@asynccontextmanager
async def lifespan(app: FastAPI):
    rt: Runtime = app.state.runtime
    s = rt.settings
    app.state.periodic_tasks = {}

    _start_task(app, "refresh_config", s.POLICY_REFRESH_INTERVAL_S, rt.manager.refresh)
    _start_task(app, "enforcement_check", s.ENFORCEMENT_INTERVAL_S, rt.enforcement.run_scheduled)
    try:
        yield
    finally:
        for name, task in list(app.state.periodic_tasks.items()):
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            _log.debug("stopped %s loop", name)
        app.state.periodic_tasks = {}
        _best_effort("close redis", runtime_mod.close_redis)


OPENAPI_TAGS = [
    {"name": "ops", "description": "Liveness probe"},
    {"name": "metrics", "description": "Prometheus exposition"},
    {"name": "admin-policy", "description": "Remote policy status and refresh"},
    {"name": "admin-access", "description": "Admin page access decisions"},
    {"name": "admin-enforcement", "description": "Plugin/theme enforcement and host hooks"},
    {"name": "admin-plugins", "description": "Required plugin install/activation"},
    {"name": "admin-audit", "description": "Block log listing, download and clearing"},
]


async def handle_access_denied(request: Request, exc: Exception) -> JSONResponse:
    reason = getattr(exc, "reason", "")
    _log.info("access denied", extra={"path": request.url.path, "reason": reason})
    return JSONResponse(status_code=403, content={"detail": "access denied"})


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    rt = runtime or runtime_mod.get_runtime()
    configure_root_logging(rt.settings.LOG_LEVEL, json_lines=rt.settings.LOG_JSON)

    app = FastAPI(
        title=rt.settings.APP_NAME,
        description="Remote policy engine protecting an administrative back office.",
        version=rt.settings.VERSION,
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
    )
    app.state.runtime = rt
    app.state.periodic_tasks = {}
    app.add_exception_handler(AccessDenied, handle_access_denied)

    app.include_router(health.router)
    app.include_router(metrics_route.router)
    app.include_router(admin_policy.router)
    app.include_router(admin_access.router)
    app.include_router(admin_enforcement.router)
    app.include_router(admin_plugins.router)
    app.include_router(admin_audit.router)

    # Last added runs first: request id is set before identity resolution logs.
    app.add_middleware(AdminContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    return app
