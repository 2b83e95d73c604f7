from __future__ import annotations

import logging
from time import perf_counter

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from waitlist.ops.events import REQUEST_ID_HEADER, bind_request_id, get_request_id, unbind_request_id

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request id for log correlation and logs each request's outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        token = bind_request_id(request.headers.get(REQUEST_ID_HEADER))
        request_id = get_request_id() or ""
        request.state.request_id = request_id
        started = perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s failed after %dms",
                request.method,
                request.url.path,
                int((perf_counter() - started) * 1000),
                extra={"event_type": "api.request.failed", "ops_payload": {"path": request.url.path}},
            )
            raise
        else:
            elapsed_ms = int((perf_counter() - started) * 1000)
            response.headers["X-Request-Id"] = request_id
            logger.info(
                "%s %s -> %d (%dms)",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                extra={
                    "event_type": "api.request.completed",
                    "ops_payload": {
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "duration_ms": elapsed_ms,
                    },
                },
            )
            return response
        finally:
            unbind_request_id(token)
