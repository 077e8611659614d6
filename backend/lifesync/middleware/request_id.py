"""
LifeSync Backend: Request ID Middleware
=========================================

What:  Assigns a correlation id to each request and echoes it back.
How:   Uses the client's X-Request-ID when present, otherwise a short UUID;
       stores it in a ContextVar (for loggers and exception handlers) and in
       request.state (for route handlers).
When:  Outermost application middleware, so every later log line and error
       body carries the id.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_REQUEST_ID = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "")[:MAX_CLIENT_REQUEST_ID] or str(uuid.uuid4())[:8]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
