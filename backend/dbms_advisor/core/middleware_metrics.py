"""
Middleware for collecting HTTP request metrics
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.metrics import (http_errors_total, http_request_duration_seconds,
                                       http_requests_total)

logger = LoggingConfig.get_logger(__name__)

# Path segments following these are ids and collapse to one label value
_ID_SEGMENTS_AFTER = {"wizard"}


def endpoint_label(path: str) -> str:
    """Path with session ids replaced by {id}"""
    parts = path.split("/")
    for i in range(1, len(parts)):
        if parts[i - 1] in _ID_SEGMENTS_AFTER and parts[i]:
            parts[i] = "{id}"
    return "/".join(parts)


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics for Prometheus
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        # Skip metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        error_type = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            duration = time.time() - start_time
            endpoint = endpoint_label(request.url.path)
            method = request.method
            status_code_str = str(status_code)

            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code_str
            ).inc()
            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code_str
            ).observe(duration)

            if status_code >= 400:
                http_errors_total.labels(
                    method=method,
                    endpoint=endpoint,
                    status_code=status_code_str,
                    error_type=error_type or f"http_{status_code}"
                ).inc()

        return response
