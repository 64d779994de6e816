# upstream/normalize.py
"""Reconcile the upstream's response shapes into one list of events.

The upstream answers with a flat array, a wrapped ``eventList``, a GeoJSON
feature collection or a bare object depending on endpoint and format. The
shape is resolved once here; nothing downstream inspects payloads.

Order is never changed: the upstream sorts (``orderby``) and we trust it.
"""
import logging
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from schemas.models import NormalizedEvent

logger = logging.getLogger(__name__)

TIME_FIELDS = ("origintime", "eventDate", "date")
ID_FIELDS = ("eventID", "eventId", "eventid", "id")
UPDATE_FIELDS = ("lastUpdateDate", "lastUpdate", "updated")
WRAPPED_LIST_FIELDS = ("eventList", "events")
# revision stamps only decide dedup; they are not emitted
EXCLUDED_PROPERTIES = frozenset(("geometry",) + UPDATE_FIELDS)


class PayloadShape(str, Enum):
    LIST = "list"
    WRAPPED = "wrapped"
    FEATURES = "features"
    SINGLE = "single"
    EMPTY = "empty"


def _first(record: Dict[str, Any], fields: Iterable[str]) -> Any:
    for field in fields:
        value = record.get(field)
        if value is not None and value != "":
            return value
    return None


def _float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _feature_record(feature: Dict[str, Any]) -> Dict[str, Any]:
    props = feature.get("properties")
    record = dict(props) if isinstance(props, dict) else {}
    record["geometry"] = feature.get("geometry")
    if _first(record, ID_FIELDS) is None and feature.get("id") is not None:
        record["id"] = feature["id"]
    return record


def resolve_shape(payload: Any) -> Tuple[PayloadShape, List[Dict[str, Any]]]:
    """First matching shape wins."""
    if isinstance(payload, list):
        return PayloadShape.LIST, [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, dict):
        for field in WRAPPED_LIST_FIELDS:
            if isinstance(payload.get(field), list):
                return PayloadShape.WRAPPED, [r for r in payload[field] if isinstance(r, dict)]
        if isinstance(payload.get("features"), list):
            features = [f for f in payload["features"] if isinstance(f, dict)]
            return PayloadShape.FEATURES, [_feature_record(f) for f in features]
        return PayloadShape.SINGLE, [payload]
    return PayloadShape.EMPTY, []


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Strings go through pandas; numbers are epoch milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        stamp = pd.to_datetime(value, unit="ms", utc=True, errors="coerce")
    else:
        text = str(value).strip()
        if not text:
            return None
        stamp = pd.to_datetime(text, errors="coerce")
    if pd.isna(stamp):
        return None
    return stamp.to_pydatetime()


def derive_time(record: Dict[str, Any]) -> Optional[datetime]:
    for field in TIME_FIELDS:
        parsed = parse_timestamp(record.get(field))
        if parsed is not None:
            return parsed
    return None


def _identity(record: Dict[str, Any]) -> Optional[str]:
    value = _first(record, ID_FIELDS)
    return None if value is None else str(value)


def _update_ordinal(record: Dict[str, Any]) -> Optional[float]:
    for field in UPDATE_FIELDS:
        parsed = parse_timestamp(record.get(field))
        if parsed is None:
            continue
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return float(pd.Timestamp(parsed).value)
    return None


def dedupe_latest(identities: Sequence[Optional[str]], updates: Sequence[Optional[float]]) -> List[int]:
    """Positions to keep, in their original order.

    One survivor per identity: the greatest update time, a record with an
    update time beats one without, ties go to the later record. Records
    without an identity all survive.
    """
    if not identities:
        return []

    frame = pd.DataFrame({
        "identity": pd.Series(list(identities), dtype=object),
        "updated": pd.Series(list(updates), dtype="float64"),
        "position": range(len(identities)),
    })
    keyed = frame[frame["identity"].notna()]
    keyed = keyed.assign(has_update=keyed["updated"].notna())
    latest = (
        keyed.sort_values(["identity", "has_update", "updated", "position"])
        .drop_duplicates("identity", keep="last")
    )
    kept = pd.concat([frame.loc[frame["identity"].isna(), "position"], latest["position"]])
    return sorted(int(p) for p in kept.tolist())


def to_event(record: Dict[str, Any], occurred_at: datetime, identity: Optional[str]) -> NormalizedEvent:
    geometry = record.get("geometry") if isinstance(record.get("geometry"), dict) else None
    coords = (geometry or {}).get("coordinates")
    if not isinstance(coords, list):
        coords = []
    # GeoJSON order: lon, lat, depth
    coords = coords + [None, None, None]

    lat = _float(_first(record, ("latitude", "lat")))
    lon = _float(_first(record, ("longitude", "lon")))
    depth = _float(_first(record, ("depth", "depth_km")))
    place = _first(record, ("location", "place"))
    mag_type = _first(record, ("type", "magType", "magtype"))

    return NormalizedEvent(
        event_id=identity,
        occurred_at=occurred_at,
        mag=_float(_first(record, ("magnitude", "mag"))),
        mag_type=None if mag_type is None else str(mag_type),
        depth_km=depth if depth is not None else _float(coords[2]),
        lat=lat if lat is not None else _float(coords[1]),
        lon=lon if lon is not None else _float(coords[0]),
        place=None if place is None else str(place),
        geometry=geometry,
        properties={k: v for k, v in record.items() if k not in EXCLUDED_PROPERTIES},
    )


def normalize_payload(payload: Any) -> List[NormalizedEvent]:
    shape, records = resolve_shape(payload)

    timed = []
    for record in records:
        occurred_at = derive_time(record)
        if occurred_at is not None:
            timed.append((record, occurred_at))
    dropped = len(records) - len(timed)
    if dropped:
        logger.info("Dropped %d of %d %s records with no resolvable time", dropped, len(records), shape.value)

    identities = [_identity(record) for record, _ in timed]
    updates = [_update_ordinal(record) for record, _ in timed]
    keep = dedupe_latest(identities, updates)
    if len(keep) < len(timed):
        logger.debug("Collapsed %d duplicate event revisions", len(timed) - len(keep))

    return [to_event(timed[i][0], timed[i][1], identities[i]) for i in keep]
