from __future__ import annotations

import logging
import os
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = float(os.getenv("SLOW_REQUEST_MS", "1000"))
QUIET_PATHS = {"/", "/health"}


def _log_level(status_code: int, duration_ms: float, path: str) -> int:
    if status_code >= 500:
        return logging.ERROR
    if duration_ms >= SLOW_REQUEST_MS:
        return logging.WARNING
    if path in QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Assign a request id, echo it back, and write one structured line per request."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            status_code = response.status_code if response is not None else 500
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            path = request.url.path

            logger.log(
                _log_level(status_code, duration_ms, path),
                "%s %s -> %s",
                request.method,
                path,
                status_code,
                extra={
                    "request_id": request_id,
                    "admin_user_id": getattr(request.state, "admin_user_id", None),
                    "endpoint": path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                    "coupon_id": request.path_params.get("coupon_id"),
                    "order_id": request.path_params.get("order_id"),
                },
            )

            if response is not None:
                response.headers[REQUEST_ID_HEADER] = request_id
            clear_request_context()
