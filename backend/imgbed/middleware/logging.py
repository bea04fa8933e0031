"""
ImgBed Backend — Request Logging Middleware
=============================================

What:  One access-log line per request on the `imgbed.access` logger.
How:   Times the downstream call and logs method, path, status, duration,
       request ID and client IP. Level follows the status class
       (5xx ERROR, 4xx WARNING, else INFO).
Who:   Applied to every request except /health.

Not logged: query strings (the preview `token` parameter travels there),
request bodies and Authorization headers.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from imgbed.middleware.request_id import request_id_var

logger = logging.getLogger("imgbed.access")

QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Typical durations:
        - GET /health:          1-5ms
        - GET /i/<id>.<ext>:    5-30ms (one indexed lookup + file stream)
        - POST /api/upload:     50-500ms (decode/encode dominates)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        rid = request_id_var.get("")
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
