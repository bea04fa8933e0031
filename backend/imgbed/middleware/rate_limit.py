"""
ImgBed Backend — Upload Rate Limiting Middleware
==================================================

What:  Per-IP sliding-window limit on upload requests.
How:   Keeps recent request timestamps per client IP in memory; a request
       arriving when the window is full gets 429 with Retry-After.
Who:   Applied to the upload path only. Image retrieval is served to
       browsers and CDNs at high volume and is not limited here.

Algorithm (sliding window):
    1. Drop timestamps older than `window` seconds
    2. If `max_requests` remain → 429, Retry-After = time until the oldest expires
    3. Otherwise record now and pass the request on

State is per process. Multi-worker deployments need a shared store.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from imgbed.config import settings
from imgbed.exceptions import RateLimitExceededError
from imgbed.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

DEFAULT_LIMITED_PATHS = ("/api/upload",)

# Sweep idle IPs every N recorded requests
CLEANUP_INTERVAL = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window: Optional[int] = None,
        limited_paths: Iterable[str] = DEFAULT_LIMITED_PATHS,
        **kwargs,
    ):
        super().__init__(app, **kwargs)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window = window or settings.rate_limit_window
        self.limited_paths = frozenset(limited_paths)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._recorded = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method != "POST" or request.url.path not in self.limited_paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - self.window

        recent = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = recent

        if len(recent) >= self.max_requests:
            retry_after = int(recent[0] + self.window - now) + 1
            logger.warning(
                "Upload rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(recent),
                self.window,
            )
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": {"retry_after": retry_after},
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self._recorded += 1
        if self._recorded % CLEANUP_INTERVAL == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]
        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
