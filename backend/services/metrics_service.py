# backend/services/metrics_service.py
import logging
import time
from typing import Any, Dict

from config import settings
from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Define Prometheus metrics
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status_code"]
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

READINGS_EVALUATED_TOTAL = Counter(
    "readings_evaluated_total",
    "Readings evaluated against thresholds",
    ["result"],  # evaluated, suppressed, error
)

ALERTS_OPENED_TOTAL = Counter(
    "alerts_opened_total", "Critical alerts opened", ["metric_type"]
)

ALERTS_CLOSED_TOTAL = Counter(
    "alerts_closed_total", "Alerts moved to history", ["resolution_type"]
)

ACTIVE_ALERTS = Gauge("active_alerts", "Currently open critical alerts")

SUPPRESSED_RACKS = Gauge("suppressed_racks", "Racks currently under maintenance")

EVALUATION_CYCLE_DURATION = Histogram(
    "evaluation_cycle_duration_seconds", "Time spent on one evaluation pass"
)

CORRELATION_EVENTS_TOTAL = Counter(
    "correlation_events_total",
    "Outbox events sent to the ticketing API",
    ["event_type", "result"],  # done, retry, failed
)

CORRELATION_OUTBOX_PENDING = Gauge(
    "correlation_outbox_pending", "Outbox events waiting to be sent"
)

BACKGROUND_TASKS_ACTIVE = Gauge(
    "background_tasks_active", "Number of active background tasks"
)

CACHE_OPERATIONS_TOTAL = Counter(
    "cache_operations_total", "Total cache operations", ["operation", "result"]
)


class MetricsService:
    """Service for collecting and exposing Prometheus metrics"""

    def __init__(self):
        self.start_time = time.time()

    async def record_http_request(
        self, request: Request, response: Response, process_time: float
    ):
        """Record HTTP request metrics"""
        HTTP_REQUESTS_TOTAL.labels(
            method=request.method,
            endpoint=self._get_endpoint_name(request.url.path),
            status_code=response.status_code,
        ).inc()

        HTTP_REQUEST_DURATION.labels(
            method=request.method, endpoint=self._get_endpoint_name(request.url.path)
        ).observe(process_time)

    def record_readings(self, result: str, count: int = 1):
        if count:
            READINGS_EVALUATED_TOTAL.labels(result=result).inc(count)

    def record_alert_opened(self, metric_type: str):
        ALERTS_OPENED_TOTAL.labels(metric_type=metric_type).inc()

    def record_alert_closed(self, resolution_type: str):
        ALERTS_CLOSED_TOTAL.labels(resolution_type=resolution_type).inc()

    def update_active_alerts(self, count: int):
        ACTIVE_ALERTS.set(count)

    def update_suppressed_racks(self, count: int):
        SUPPRESSED_RACKS.set(count)

    def record_cycle_duration(self, seconds: float):
        EVALUATION_CYCLE_DURATION.observe(seconds)

    def record_correlation_event(self, event_type: str, result: str):
        CORRELATION_EVENTS_TOTAL.labels(event_type=event_type, result=result).inc()

    def update_outbox_pending(self, count: int):
        CORRELATION_OUTBOX_PENDING.set(count)

    def update_background_tasks(self, count: int):
        """Update active background tasks count"""
        BACKGROUND_TASKS_ACTIVE.set(count)

    def record_cache_operation(self, operation: str, result: str):
        """Record cache operation (hit/miss/error)"""
        CACHE_OPERATIONS_TOTAL.labels(operation=operation, result=result).inc()

    def _get_endpoint_name(self, path: str) -> str:
        """Normalize endpoint paths for metrics"""
        # Replace dynamic path segments with placeholders
        parts = path.split("/")
        if path.startswith("/api/v1/alerts/") and path.endswith("/close") and len(parts) == 6:
            return "/api/v1/alerts/{alert_id}/close"
        elif path.startswith("/api/v1/racks/") and path.endswith("/thresholds"):
            return "/api/v1/racks/{rack_id}/thresholds"
        elif path.startswith("/api/v1/maintenance/rack/"):
            return "/api/v1/maintenance/rack/{rack_id}"
        elif path.startswith("/api/v1/maintenance/entry/"):
            return "/api/v1/maintenance/entry/{entry_id}"
        else:
            return path

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format"""
        return generate_latest()

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def get_custom_metrics(self) -> Dict[str, Any]:
        """Get custom application metrics"""
        uptime = time.time() - self.start_time

        return {
            "application_uptime_seconds": uptime,
            "application_info": {
                "version": settings.api_version,
                "environment": settings.env,
            },
        }


# Global metrics service instance
metrics_service = MetricsService()


# Middleware for automatic metrics collection
async def metrics_middleware(request: Request, call_next):
    """Middleware to automatically collect HTTP metrics"""
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time
    await metrics_service.record_http_request(request, response, process_time)

    return response
