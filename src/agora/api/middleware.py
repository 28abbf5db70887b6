"""
Middleware setup for the FastAPI application.
"""

import time
import uuid
from typing import Callable, Dict

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.config import settings
from ..core.logging import audit_logger, logger

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a request id, logs each request and records API access audit events."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        client_ip = request.client.host if request.client else "unknown"

        start_time = time.time()
        logger.info(f"Request {request_id}: {request.method} {request.url.path} from {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(f"Request {request_id}: Error after {duration_ms:.0f}ms - {e}")
            if request.url.path.startswith("/api/"):
                audit_logger.log_api_access(
                    method=request.method,
                    endpoint=request.url.path,
                    ip_address=client_ip,
                    status_code=500,
                    response_time_ms=duration_ms,
                    request_id=request_id
                )
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Request {request_id}: {response.status_code} ({duration_ms:.0f}ms)")
        if request.url.path.startswith("/api/"):
            audit_logger.log_api_access(
                method=request.method,
                endpoint=request.url.path,
                ip_address=client_ip,
                status_code=response.status_code,
                response_time_ms=duration_ms,
                request_id=request_id
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestMetrics:
    """Process-wide request counters."""

    def __init__(self):
        self.request_count = 0
        self.error_count = 0
        self.request_duration_total = 0.0

    def record(self, duration: float, error: bool = False) -> None:
        self.request_count += 1
        self.request_duration_total += duration
        if error:
            self.error_count += 1

    def snapshot(self) -> Dict[str, float]:
        return {
            "total_requests": self.request_count,
            "total_errors": self.error_count,
            "average_request_duration": self.request_duration_total / max(self.request_count, 1),
            "error_rate": self.error_count / max(self.request_count, 1),
        }


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collects request counts and durations into a shared RequestMetrics."""

    def __init__(self, app, metrics: RequestMetrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            self.metrics.record(time.time() - start_time, error=True)
            raise

        duration = time.time() - start_time
        self.metrics.record(duration, error=response.status_code >= 500)
        response.headers["X-Request-Duration"] = f"{duration:.3f}"
        return response


def setup_middleware(app: FastAPI) -> None:
    """Setup all middleware for the application."""
    if settings.enable_metrics:
        metrics = RequestMetrics()
        app.state.metrics = metrics
        app.add_middleware(MetricsMiddleware, metrics=metrics)

    # Added last so it runs first and the request id is set for everything below.
    if settings.log_requests:
        app.add_middleware(RequestLoggingMiddleware)

    logger.info("Middleware setup completed")
