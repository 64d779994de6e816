# api/handler.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Tuple

from prometheus_client import Counter

from api.cache import CachedResponse, CacheStore
from api.config import Settings
from api.params import parse_query, wants_bypass
from schemas.errors import ProxyError, UpstreamError
from schemas.models import ErrorEnvelope, EventsEnvelope, QueryFilter
from upstream.normalize import normalize_payload

logger = logging.getLogger(__name__)

CACHE_LOOKUPS = Counter(
    "proxy_cache_lookups_total",
    "Event cache lookups",
    ["result"],
)

UPSTREAM_REQUESTS = Counter(
    "proxy_upstream_requests_total",
    "Upstream calls by outcome",
    ["outcome"],
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def error_envelope(code: str, detail: str) -> Dict[str, Any]:
    return ErrorEnvelope(code=code, detail=detail, timestamp=_utcnow()).model_dump(mode="json")


class EventQueryHandler:
    """Runs one request through validation, cache, upstream and normalization."""

    def __init__(self, cache: CacheStore, upstream, settings: Settings):
        self.cache = cache
        self.upstream = upstream
        self.settings = settings

    def _load(self, query: QueryFilter) -> CachedResponse:
        try:
            payload = self.upstream.fetch(query)
        except UpstreamError as exc:
            UPSTREAM_REQUESTS.labels(outcome=exc.code.lower()).inc()
            raise
        UPSTREAM_REQUESTS.labels(outcome="ok").inc()
        events = normalize_payload(payload)
        return CachedResponse(events=tuple(events), fetched_at=_utcnow())

    def handle(self, raw: Mapping[str, Any]) -> Tuple[int, Dict[str, Any]]:
        try:
            query = parse_query(raw, self.settings)
            bypass = wants_bypass(raw)
            key = query.cache_key()
            value, cached = self.cache.get_or_fill(key, lambda: self._load(query), bypass=bypass)
        except ProxyError as exc:
            logger.warning("Request failed with %s: %s", exc.code, exc.detail)
            return exc.status_code, error_envelope(exc.code, exc.detail)
        except Exception as exc:
            logger.exception("Unexpected error while handling event query")
            return 500, error_envelope("INTERNAL_ERROR", str(exc) or exc.__class__.__name__)

        result = "hit" if cached else ("bypass" if bypass else "miss")
        CACHE_LOOKUPS.labels(result=result).inc()
        logger.info("Cache %s for %s (%d events)", result, key, len(value.events))

        envelope = EventsEnvelope(
            cached=cached,
            params=query,
            count=len(value.events),
            data=list(value.events),
            fetched_at=value.fetched_at,
        )
        return 200, envelope.model_dump(mode="json", by_alias=True)
