import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from api.cache import CacheStore
from api.config import Settings
from api.handler import EventQueryHandler, error_envelope
from api.middleware.headers import ResponseHeadersMiddleware
from api.routers import events
from schemas.errors import MethodNotAllowed
from schemas.models import HealthOut
from upstream.client import UpstreamClient

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)

SERVICE_NAME = "Seismic Event Proxy"
UNMATCHED_PATH = "<unmatched>"

HTTP_ERROR_CODES = {
    404: "NOT_FOUND",
    405: MethodNotAllowed.code,
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =========================
# PROMETHEUS METRICS
# =========================

# Requests by method, path and status code
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

# Latency by method and path
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        # route template, so unmatched paths cannot grow the label set
        route = request.scope.get("route")
        path = getattr(route, "path", None) or UNMATCHED_PATH
        method = request.method
        status = response.status_code

        REQUEST_COUNT.labels(method=method, path=path, status=status).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(process_time)
        logger.info("%s %s -> %s (%.1f ms)", method, request.url, status, process_time * 1000)

        return response


def create_app(
    settings: Optional[Settings] = None,
    cache: Optional[CacheStore] = None,
    upstream: Optional[UpstreamClient] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    # created at startup, torn down at shutdown; an empty store is falsy
    cache = cache if cache is not None else CacheStore(ttl_seconds=settings.cache_ttl_seconds)
    upstream = upstream if upstream is not None else UpstreamClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Proxying %s (%s, timeout %gs, cache TTL %gs)",
            settings.upstream_url,
            settings.upstream_method,
            settings.upstream_timeout,
            settings.cache_ttl_seconds,
        )
        yield
        cache.clear()
        upstream.close()

    app = FastAPI(
        title="Seismic Event Proxy",
        version="0.1",
        description="Caching proxy in front of the AFAD seismic event query service.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.cache = cache
    app.state.upstream = upstream
    app.state.handler = EventQueryHandler(cache, upstream, settings)

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(ResponseHeadersMiddleware, allow_origins=settings.cors_origins)
    app.include_router(events.router)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        if exc.status_code == 405:
            detail = f"Method {request.method} is not allowed; use GET"
        else:
            detail = str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=error_envelope(code, detail))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_envelope("INTERNAL_ERROR", str(exc)))

    # Healthcheck
    @app.get("/health", response_model=HealthOut)
    @app.get("/api/health", response_model=HealthOut, include_in_schema=False)
    def health():
        return HealthOut(timestamp=datetime.now(timezone.utc), service=SERVICE_NAME)

    # Prometheus exposition format
    @app.get("/metrics")
    def metrics():
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
