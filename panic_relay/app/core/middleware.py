"""
Request middleware — logging, timing, correlation IDs.

Provides:
    • X-Request-ID header injection (correlation ID)
    • Request/response timing (X-Process-Time header)
    • One log entry per request, with phone numbers in the path masked
      (``/api/emergencias/912345678`` is logged as ``/api/emergencias/9*****678``)
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from panic_relay.app.alerts.phone import mask_phone
from panic_relay.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_DIGIT_RUN = re.compile(r"(?<![\w-])\+?\d[\d\s\-]{5,}\d(?![\w-])")
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def masked_path(path: str) -> str:
    """Replace anything that looks like a phone number in a URL path."""
    return _DIGIT_RUN.sub(lambda m: mask_phone(m.group(0)), path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing and inject a correlation ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        client_ip = request.client.host if request.client else "unknown"
        path = masked_path(request.url.path)

        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, duration_ms, client_ip,
                extra={"duration_ms": duration_ms, "status_code": 500},
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                "%s %s → %d (%.1fms) [%s]",
                request.method, path, response.status_code,
                duration_ms, client_ip,
                extra={
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        set_request_context()
        return response
