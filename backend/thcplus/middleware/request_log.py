import logging
import re
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from thcplus.core.logging_config import request_id_ctx_var

logger = logging.getLogger("thcplus.request")

_INBOUND_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,64}$")
_QUIET_PATHS = {"/api/health"}


def _request_id_for(request: Request) -> str:
    inbound = (request.headers.get("x-request-id") or "").strip()
    if _INBOUND_REQUEST_ID_RE.match(inbound):
        return inbound
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (honouring a well-formed upstream X-Request-ID) and log one line per response."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = _request_id_for(request)
        token = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        request.state.request_id = request_id
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            if response is not None:
                response.headers["X-Request-ID"] = request_id
                if request.url.path not in _QUIET_PATHS:
                    logger.info(
                        "request",
                        extra={
                            "path": request.url.path,
                            "method": request.method,
                            "status_code": response.status_code,
                            "duration_ms": int((time.perf_counter() - started) * 1000),
                        },
                    )
            request_id_ctx_var.reset(token)
