"""API middleware for request logging and unexpected errors."""
from __future__ import annotations

import time
from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request and log its outcome.

    ``IngestionError`` is turned into a response by the exception handler
    before it reaches here; anything else becomes a 500.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=str(uuid4()))
        try:
            response = await call_next(request)
            duration = int((time.monotonic() - start) * 1000)
            logger.info("request", method=request.method, path=request.url.path,
                        status=response.status_code, duration_ms=duration)
            return response
        except Exception as e:
            duration = int((time.monotonic() - start) * 1000)
            logger.error("request_error", method=request.method, path=request.url.path,
                         error=str(e), duration_ms=duration, exc_info=True)
            return JSONResponse(status_code=500, content={"error": "internal", "detail": "Internal server error"})
        finally:
            structlog.contextvars.clear_contextvars()
