"""HTTP metrics middleware."""
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import structlog

log = structlog.get_logger()


def route_label(request: Request) -> str:
    """Route template (e.g. /v1/rules/{rule_id}) so rule IDs do not become label values."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts and times every request except scrapes of /metrics."""

    def __init__(self, app, metrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        service = self.metrics.service_name
        status = 500
        start_time = time.time()

        with self.metrics.http_requests_active.labels(service=service).track_inprogress():
            try:
                response = await call_next(request)
                status = response.status_code
                return response
            finally:
                duration = time.time() - start_time
                path = route_label(request)
                self.metrics.http_requests_total.labels(
                    service=service, method=request.method, path=path, status=status,
                ).inc()
                self.metrics.http_request_duration.labels(
                    service=service, method=request.method, path=path,
                ).observe(duration)
                log.info("http_request", http_status=status, duration_ms=round(duration * 1000, 2))
