"""
Request middleware: request IDs, timing and structured access logs.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from gatepass.core.logging import get_logger

logger = get_logger(__name__)

# Scanner apps send this so repeat scans can be traced to a device
DEVICE_HEADER = "X-Gate-Device"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds request_id, method, path (and the gate device, when sent) into
    structlog contextvars for every log line emitted while handling the
    request, then logs one access line whose level follows the status code.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
        device = request.headers.get(DEVICE_HEADER)
        if device:
            context["gate_device"] = device
        structlog.contextvars.bind_contextvars(**context)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log("request_completed", status_code=response.status_code, duration_ms=duration_ms)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
