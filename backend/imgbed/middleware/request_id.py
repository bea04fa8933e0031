"""
ImgBed Backend — Request ID Middleware
========================================

What:  Assigns a correlation ID to each request and echoes it back.
How:   Reuses a client-supplied X-Request-ID or generates a short one,
       stores it in a ContextVar for loggers and error handlers, and sets
       it on the response.
Who:   Applied to every request; read by the access log and the global
       exception handlers (`request_id` in error bodies).
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Behavior:
        1. Take X-Request-ID from the client if present (truncated)
        2. Otherwise generate the first 8 hex chars of a UUID4
        3. Store in request_id_var and request.state.request_id
        4. Add X-Request-ID to the response
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get("X-Request-ID", "").strip()
        rid = supplied[:MAX_CLIENT_ID_LENGTH] or uuid.uuid4().hex[:8]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
