"""
Structured HTTP access logging

One `http_request_completed` entry per request with ECS-style field names;
5xx at error level with the traceback, slow successes (> 1 s) at warning.
The path of unauthenticated tracking lookups is logged without the token.
"""

import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from orderflow.core.logging import get_logger

logger = get_logger(__name__)

SLOW_REQUEST_MS = 1000


def _loggable_path(path: str) -> str:
    if "/track/" in path:
        return path.rsplit("/", 1)[0] + "/{token}"
    return path


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        start_time = time.time()
        log_data = {
            "http.request.method": request.method,
            "url.path": _loggable_path(request.url.path),
            "url.query": str(request.url.query) or None,
            "client.ip": request.client.host if request.client else None,
            "user_agent.original": request.headers.get("user-agent"),
            "user.id": request.headers.get("x-user-id"),
        }

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "http_request_completed",
                **log_data,
                **{"http.response.status_code": 500},
                duration_ms=round(duration_ms, 2),
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=e,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_data["http.response.status_code"] = response.status_code
        log_data["duration_ms"] = round(duration_ms, 2)

        if response.status_code >= 500:
            logger.error("http_request_completed", **log_data)
        elif duration_ms > SLOW_REQUEST_MS:
            logger.warning("http_request_slow", **log_data)
        else:
            logger.info("http_request_completed", **log_data)
        return response
