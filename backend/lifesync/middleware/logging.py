"""
LifeSync Backend: Request Logging Middleware
==============================================

What:  One access-log line per HTTP request (method, path, status, duration,
       request id), with the same fields in `extra=` for log shippers.
How:   Severity follows the status: 5xx ERROR, 4xx WARNING, otherwise INFO.
       /health is skipped (probed every few seconds).

Never logged: request bodies (note content is personal), the X-User-ID
header, and Authorization headers.

Typical durations:
    - GET /health, GET /api/usage: a few ms
    - GET /api/reports/{id}: 10-50ms (one query)
    - POST /api/reports/generate: 3-30s (LLM call dominates)
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from lifesync.middleware.request_id import request_id_var

logger = logging.getLogger("lifesync.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        method = request.method
        client_ip = request.client.host if request.client else "unknown"

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
