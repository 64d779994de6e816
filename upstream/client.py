# upstream/client.py
import logging
from typing import Any, Dict, Optional, Union

import requests

from schemas.errors import (
    UpstreamEmptyBody,
    UpstreamHttpError,
    UpstreamNoResponse,
    UpstreamTimeout,
)
from schemas.models import UPSTREAM_TIME_FORMAT, QueryFilter, SortOrder

logger = logging.getLogger(__name__)

Payload = Union[list, dict]

DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "seismic-proxy/0.1"

# Legacy event-service filter types
FILTER_START = 8
FILTER_END = 9


def build_search_payload(query: QueryFilter) -> Dict[str, Any]:
    """Request body for the legacy POST event-service endpoint."""
    descending = query.sort_order in (SortOrder.TIME_DESC, SortOrder.MAG_DESC)
    by_magnitude = query.sort_order in (SortOrder.MAG_DESC, SortOrder.MAG_ASC)
    return {
        "EventSearchFilterList": [
            {"FilterType": FILTER_START, "Value": query.time_range.start.strftime(UPSTREAM_TIME_FORMAT)},
            {"FilterType": FILTER_END, "Value": query.time_range.end.strftime(UPSTREAM_TIME_FORMAT)},
        ],
        "Skip": query.pagination.offset,
        "Take": query.pagination.limit,
        "SortDescriptor": {
            "field": "magnitude" if by_magnitude else "eventDate",
            "dir": "desc" if descending else "asc",
        },
    }


class UpstreamClient:
    """Issues exactly one call per fetch; failures are classified, never retried."""

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        method: str = "GET",
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.method = method.upper()
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

    @classmethod
    def from_settings(cls, settings, session: Optional[requests.Session] = None) -> "UpstreamClient":
        return cls(
            url=settings.upstream_url,
            timeout=settings.upstream_timeout,
            method=settings.upstream_method,
            user_agent=settings.user_agent,
            session=session,
        )

    def _send(self, query: QueryFilter) -> requests.Response:
        if self.method == "POST":
            return self.session.post(self.url, json=build_search_payload(query), timeout=self.timeout)
        return self.session.get(self.url, params=query.to_upstream_params(), timeout=self.timeout)

    def fetch(self, query: QueryFilter) -> Payload:
        try:
            response = self._send(query)
        except requests.exceptions.Timeout as exc:
            logger.warning("Upstream timed out after %gs: %s", self.timeout, self.url)
            raise UpstreamTimeout(f"Upstream did not respond within {self.timeout:g} seconds") from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("Upstream unreachable: %s (%s)", self.url, exc)
            raise UpstreamNoResponse(f"Upstream could not be reached: {exc}") from exc

        status = response.status_code
        if not 200 <= status < 300:
            logger.warning("Upstream HTTP %s %s", status, response.reason)
            raise UpstreamHttpError(status, f"Upstream HTTP {status}: {response.reason or 'error'}")

        if not response.content or not response.content.strip():
            raise UpstreamEmptyBody("Upstream returned an empty body")
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamEmptyBody("Upstream returned a body that is not JSON") from exc
        if not isinstance(payload, (list, dict)):
            raise UpstreamEmptyBody(f"Upstream returned an unexpected payload type: {type(payload).__name__}")
        return payload

    def close(self) -> None:
        self.session.close()
