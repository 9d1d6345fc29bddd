"""
HTTP Metrics Middleware

Tracks request counts by status class, latency and in-flight requests, with
ids and tracking tokens templated out of the path label.
"""

import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from orderflow.core.metrics import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.uuid_pattern = re.compile(
            r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}(/|$)"
        )
        self.numeric_pattern = re.compile(r"/\d+(/|$)")
        self.tracking_pattern = re.compile(r"/track/[^/]+$")

    def _template_path(self, path: str) -> str:
        """
        Examples:
            /api/v1/orders/123e4567-e89b-12d3-a456-426614174000 -> /api/v1/orders/{id}
            /api/v1/track/Xy3_kP... -> /api/v1/track/{token}
        """
        templated = self.uuid_pattern.sub(r"/{id}\1", path)
        templated = self.numeric_pattern.sub(r"/{id}\1", templated)
        return self.tracking_pattern.sub("/track/{token}", templated)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        endpoint = self._template_path(request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            http_requests_total.labels(
                method=method, endpoint=endpoint, status_code=f"{status_code // 100}xx"
            ).inc()
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.time() - start_time
            )
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()

        return response
