from __future__ import annotations
import time
from fastapi import Response, Request
from prometheus_client import (
    Counter, Histogram, CollectorRegistry,
    CONTENT_TYPE_LATEST, generate_latest,
)
from ..config import get_settings

S = get_settings()

REGISTRY = CollectorRegistry(auto_describe=True)

# ---------- Metric definitions ----------
HTTP_REQS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"], registry=REGISTRY)
HTTP_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency", ["method", "path"], registry=REGISTRY)

REG_CREATED    = Counter("reg_created_total",    "Registrations created (registered or waitlisted)", ["event_id"], registry=REGISTRY)
REG_WAITLISTED = Counter("reg_waitlisted_total", "Registrations placed on the waitlist",              ["event_id"], registry=REGISTRY)
REG_REJECTED   = Counter("reg_rejected_total",   "Registration attempts rejected",                   ["code"],     registry=REGISTRY)
REG_CANCELLED  = Counter("reg_cancelled_total",  "Registrations cancelled",                          ["event_id"], registry=REGISTRY)
PROMOTED       = Counter("reg_promoted_total",   "Registrations promoted from the waitlist",         ["event_id"], registry=REGISTRY)
CHECKED_IN     = Counter("reg_checked_in_total", "Registrations checked in",                         ["event_id"], registry=REGISTRY)
NOTIFY_FAILED  = Counter("notify_failed_total",  "Outbound notifications that failed",               ["channel"],  registry=REGISTRY)

# ---------- /metrics endpoint factory ----------
def metrics_app():
    async def _metrics(_: Request):
        if not S.METRICS_ENABLED:
            return Response(status_code=404)
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)
    return _metrics

# ---------- HTTP middleware for latency/counters ----------
class MetricsHTTPMiddleware:
    def __init__(self, app):
        self.app = app
    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)
        method = scope["method"]
        # route template keeps label cardinality bounded (ids stay out of the label)
        t0 = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                route = scope.get("route")
                path = getattr(route, "path", None) or "unmatched"
                HTTP_REQS.labels(method=method, path=path, status=message["status"]).inc()
                HTTP_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - t0)
            await send(message)

        await self.app(scope, receive, send_wrapper)
