"""
HTTP metrics middleware for the Idea Engine AI router.

Tracks request count and duration per method/path/status.
Zero overhead when METRICS_ENABLED=false (default).
"""

import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics.

    Tracks total request count and request duration by method, path, and
    status code. When METRICS_ENABLED is false, the middleware passes
    through without any overhead.
    """

    # Paths to exclude from per-path metric labels to avoid high cardinality
    _SKIP_PATHS = frozenset({"/health", "/readiness", "/metrics", "/favicon.ico"})

    def _path_label(self, request: Request) -> str:
        """Route template when one matched, so labels stay low-cardinality."""
        route = request.scope.get("route")
        template = getattr(route, "path", None)
        if template:
            return template
        return "unmatched"

    async def dispatch(self, request: Request, call_next):
        from metrics import METRICS_ENABLED, track_request

        if not METRICS_ENABLED:
            return await call_next(request)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        if request.url.path not in self._SKIP_PATHS:
            track_request(request.method, self._path_label(request), response.status_code, duration)

        return response
