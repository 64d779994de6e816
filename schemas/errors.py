# schemas/errors.py
from typing import Optional


class ProxyError(Exception):
    """Base error surfaced to the caller as a failure envelope."""

    code = "PROXY_ERROR"
    status_code = 500

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class MethodNotAllowed(ProxyError):
    code = "METHOD_NOT_ALLOWED"
    status_code = 405


class InvalidParameter(ProxyError):
    code = "INVALID_PARAMETER"
    status_code = 400


class ParamConflict(ProxyError):
    code = "PARAM_CONFLICT"
    status_code = 400


class UpstreamError(ProxyError):
    code = "UPSTREAM_ERROR"
    status_code = 502


class UpstreamTimeout(UpstreamError):
    code = "UPSTREAM_TIMEOUT"
    status_code = 504


class UpstreamHttpError(UpstreamError):
    code = "UPSTREAM_HTTP_ERROR"

    def __init__(self, upstream_status: int, detail: Optional[str] = None):
        # mirror the upstream code only when it is itself an HTTP error status
        status = upstream_status if 400 <= upstream_status <= 599 else 502
        super().__init__(detail or f"Upstream responded with HTTP {upstream_status}", status)
        self.upstream_status = upstream_status


class UpstreamNoResponse(UpstreamError):
    code = "UPSTREAM_NO_RESPONSE"


class UpstreamEmptyBody(UpstreamError):
    code = "UPSTREAM_EMPTY_BODY"
