# api/params.py
"""Translate inbound query strings into a validated ``QueryFilter``.

Every check happens here, before the cache or the upstream is touched, so a
request that gets past ``parse_query`` can always be forwarded as-is.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import pandas as pd
import pytz

from api.config import Settings
from schemas.errors import InvalidParameter, ParamConflict
from schemas.models import (
    NumericRange,
    Pagination,
    QueryFilter,
    Radial,
    Rectangle,
    SortOrder,
    TimeRange,
)

RECTANGLE_FIELDS = ("minlat", "maxlat", "minlon", "maxlon")
RADIAL_FIELDS = ("lat", "lon", "maxrad", "minrad")
RADIAL_REQUIRED = ("lat", "lon", "maxrad")

SORT_ALIASES = {
    "timedesc": SortOrder.TIME_DESC,
    "time-desc": SortOrder.TIME_DESC,
    "time-descending": SortOrder.TIME_DESC,
    "timeasc": SortOrder.TIME_ASC,
    "time-asc": SortOrder.TIME_ASC,
    "time-ascending": SortOrder.TIME_ASC,
    "magdesc": SortOrder.MAG_DESC,
    "magasc": SortOrder.MAG_ASC,
}

BYPASS_VALUES = ("true", "1")
# Upstream parameters the legacy POST search body can express
SEARCH_BODY_FIELDS = ("start", "end", "orderby", "format", "limit", "offset")
MAX_DAYS = 365


def _present(raw: Mapping[str, Any], name: str) -> bool:
    value = raw.get(name)
    return value is not None and str(value).strip() != ""


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        number = _to_float(text)
        return int(number) if number is not None else None


def upstream_zone(settings: Settings):
    """pytz zone for the upstream's wall clock, or None for the server's local offset."""
    if settings.upstream_timezone.lower() == "local":
        return None
    return pytz.timezone(settings.upstream_timezone)


def to_upstream_wallclock(value: datetime, zone) -> datetime:
    """Naive datetime in the upstream's wall-clock convention.

    Zone-less values are taken as already expressed that way.
    """
    if value.tzinfo is not None:
        value = value.astimezone(zone) if zone is not None else value.astimezone()
        value = value.replace(tzinfo=None)
    return value.replace(microsecond=0)


def _parse_time(raw: Mapping[str, Any], name: str, zone) -> Optional[datetime]:
    if not _present(raw, name):
        return None
    text = str(raw[name]).strip()
    stamp = pd.to_datetime(text, errors="coerce")
    if pd.isna(stamp):
        raise InvalidParameter(f"'{name}' is not a valid date/time: {text!r}")
    return to_upstream_wallclock(stamp.to_pydatetime(), zone)


def _range(raw: Mapping[str, Any], low: str, high: str) -> Optional[NumericRange]:
    lo, hi = _to_float(raw.get(low)), _to_float(raw.get(high))
    if lo is None and hi is None:
        return None
    return NumericRange(min=lo, max=hi)


def _geo_filter(raw: Mapping[str, Any]):
    rectangle = [name for name in RECTANGLE_FIELDS if _present(raw, name)]
    radial = [name for name in RADIAL_FIELDS if _present(raw, name)]

    if rectangle and radial:
        raise ParamConflict(
            f"Rectangle bounds ({', '.join(rectangle)}) cannot be combined "
            f"with radial bounds ({', '.join(radial)})"
        )

    if radial:
        values = {name: _to_float(raw.get(name)) for name in RADIAL_FIELDS}
        missing = [name for name in RADIAL_REQUIRED if values[name] is None]
        if missing:
            raise InvalidParameter(
                "Radial search requires lat, lon and maxrad; "
                f"missing or invalid: {', '.join(missing)}"
            )
        return Radial(**values)

    if rectangle:
        values = {name: _to_float(raw.get(name)) for name in RECTANGLE_FIELDS}
        if any(v is not None for v in values.values()):
            return Rectangle(**values)
    return None


def _window_days(raw: Mapping[str, Any], settings: Settings) -> int:
    days = _to_int(raw.get("days"))
    if days is None:
        return settings.default_days
    if not 1 <= days <= MAX_DAYS:
        raise InvalidParameter(f"'days' must be between 1 and {MAX_DAYS}, got {days}")
    return days


def _limit(raw: Mapping[str, Any], settings: Settings) -> int:
    requested = _to_int(raw.get("limit"))
    if requested is None or requested < 1:
        requested = settings.safe_limit
    # upstream cap first, then our own
    limit = min(requested, settings.upstream_max_limit)
    return min(limit, settings.safe_limit)


def _offset(raw: Mapping[str, Any]) -> int:
    offset = _to_int(raw.get("offset"))
    if offset is None:
        return 0
    if offset < 0:
        raise InvalidParameter(f"'offset' must be >= 0, got {offset}")
    return offset


def _sort_order(raw: Mapping[str, Any]) -> SortOrder:
    if not _present(raw, "orderby"):
        return SortOrder.TIME_DESC
    token = str(raw["orderby"]).strip().lower()
    try:
        return SORT_ALIASES[token]
    except KeyError:
        raise InvalidParameter(
            f"'orderby' must be one of {', '.join(sorted(SORT_ALIASES))}, got {token!r}"
        ) from None


def wants_bypass(raw: Mapping[str, Any]) -> bool:
    return str(raw.get("nocache") or "").strip().lower() in BYPASS_VALUES


def _reject_unsupported_filters(query: QueryFilter, settings: Settings) -> None:
    # the legacy POST search body only carries the time window and paging
    if settings.upstream_method != "POST":
        return
    params = query.to_upstream_params()
    unsupported = sorted(name for name in params if name not in SEARCH_BODY_FIELDS)
    if unsupported:
        raise InvalidParameter(
            f"Filters not supported by the upstream search endpoint: {', '.join(unsupported)}"
        )


def parse_query(raw: Mapping[str, Any], settings: Settings, now: Optional[datetime] = None) -> QueryFilter:
    # conflicts are reported before anything is parsed or defaulted
    geo = _geo_filter(raw)

    zone = upstream_zone(settings)
    start = _parse_time(raw, "start", zone)
    end = _parse_time(raw, "end", zone)
    days = _window_days(raw, settings)

    if start is None or end is None:
        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        current = to_upstream_wallclock(current, zone).replace(second=0)
        if end is None:
            end = current
        if start is None:
            start = current - timedelta(days=days)

    if start > end:
        raise InvalidParameter(f"'start' ({start.isoformat()}) is after 'end' ({end.isoformat()})")

    magtype = str(raw.get("magtype") or "").strip() or None
    fmt = str(raw.get("format") or "").strip() or "json"

    query = QueryFilter(
        time_range=TimeRange(start=start, end=end),
        geo=geo,
        depth=_range(raw, "mindepth", "maxdepth"),
        magnitude=_range(raw, "minmag", "maxmag"),
        magnitude_type=magtype,
        event_id=_to_int(raw.get("eventid")),
        pagination=Pagination(limit=_limit(raw, settings), offset=_offset(raw)),
        sort_order=_sort_order(raw),
        format=fmt,
    )
    _reject_unsupported_filters(query, settings)
    return query
