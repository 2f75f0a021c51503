import time
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
import structlog

logger = structlog.get_logger()

QUIET_PATHS = {"/", "/health"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds request context for structlog and logs one line per request.
    Anything that escapes the route handlers is turned into a JSON 500 so
    mobile clients always get {ok, error} back.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.exception("http_request_failed", error=str(e), latency_ms=latency_ms)
            response = JSONResponse({"ok": False, "error": str(e) or "Internal Server Error"}, status_code=500)
            response.headers["X-Request-ID"] = request_id
            return response

        latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
        response.headers["X-Request-ID"] = request_id

        if request.url.path not in QUIET_PATHS:
            logger.info("http_request", status_code=response.status_code, latency_ms=latency_ms)

        return response
