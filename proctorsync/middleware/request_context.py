"""Request context middleware: assigns a unique ID to every request.

Concurrent requests interleave their log lines on the same event loop.
The request ID ties each line back to the request that produced it, and
is echoed in the X-Request-ID response header so a client can quote it.

The ID lives in a ``ContextVar`` rather than a thread-local: requests run
as tasks on ONE thread, and each task gets its own copy of the context.
A logging filter on the root logger copies it onto every LogRecord, so
modules never pass it around explicitly.

The completion log line also carries the learner id when the route has a
``user_id`` path parameter, which makes "everything that happened to
learner X" a single log query.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Copies the current request ID onto every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        extra = {
            "request_id": req_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
        # path_params is filled in by the router once call_next has run
        user_id = request.path_params.get("user_id")
        if user_id:
            extra["user_id"] = user_id

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra=extra,
        )

        response.headers["X-Request-ID"] = req_id
        return response
