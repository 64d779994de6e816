# api/middleware/headers.py
from typing import Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

ALLOW_METHODS = "GET, OPTIONS"
ALLOW_HEADERS = "Content-Type"
# Browser/CDN caching is always off; the in-process cache has its own TTL
NO_STORE = "no-store, no-cache, must-revalidate"


class ResponseHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, allow_origins: Iterable[str] = ("*",)):
        super().__init__(app)
        self.allow_origins = list(allow_origins)

    def _origin_for(self, request: Request):
        if "*" in self.allow_origins:
            return "*"
        origin = request.headers.get("origin")
        return origin if origin in self.allow_origins else None

    async def dispatch(self, request: Request, call_next):
        # Preflight never reaches the routes
        if request.method.upper() == "OPTIONS":
            response = Response(status_code=204)
        else:
            response = await call_next(request)

        origin = self._origin_for(request)
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            if origin != "*":
                response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
        response.headers["Cache-Control"] = NO_STORE
        response.headers["Pragma"] = "no-cache"
        return response
