from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

HEADER = "X-Request-ID"

# Incoming ids end up in log lines; anything outside this shape is replaced.
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


def _accept(raw: Optional[str]) -> Optional[str]:
    value = (raw or "").strip()
    return value if _SAFE_ID.match(value) else None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id: the caller's X-Request-ID when it is a
    short token, otherwise a fresh UUID4. The id is available through
    ``get_request_id()`` for the duration of the request and is echoed on
    the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        rid = _accept(request.headers.get(HEADER)) or str(uuid.uuid4())
        request.state.request_id = rid
        token = _REQUEST_ID.set(rid)
        try:
            response = await call_next(request)
        finally:
            _REQUEST_ID.reset(token)
        response.headers[HEADER] = rid
        return response
