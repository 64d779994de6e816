# schemas/models.py
import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Upstream wall-clock format: no fractional seconds, no zone suffix
UPSTREAM_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class TimeRange(FrozenModel):
    start: datetime
    end: datetime


class Rectangle(FrozenModel):
    kind: Literal["rectangle"] = "rectangle"
    minlat: Optional[float] = None
    maxlat: Optional[float] = None
    minlon: Optional[float] = None
    maxlon: Optional[float] = None


class Radial(FrozenModel):
    kind: Literal["radial"] = "radial"
    lat: float
    lon: float
    maxrad: float
    minrad: Optional[float] = None


GeoFilter = Annotated[Union[Rectangle, Radial], Field(discriminator="kind")]


class NumericRange(FrozenModel):
    min: Optional[float] = None
    max: Optional[float] = None


class Pagination(FrozenModel):
    limit: int = Field(ge=1)
    offset: int = Field(0, ge=0)


class SortOrder(str, Enum):
    TIME_DESC = "timedesc"
    TIME_ASC = "timeasc"
    MAG_DESC = "magdesc"
    MAG_ASC = "magasc"


class QueryFilter(FrozenModel):
    """Validated filter for one request. Build it with ``api.params.parse_query``."""

    time_range: TimeRange
    geo: Optional[GeoFilter] = None
    depth: Optional[NumericRange] = None
    magnitude: Optional[NumericRange] = None
    magnitude_type: Optional[str] = None
    event_id: Optional[int] = None
    pagination: Pagination
    sort_order: SortOrder = SortOrder.TIME_DESC
    format: str = "json"

    def to_upstream_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "start": self.time_range.start.strftime(UPSTREAM_TIME_FORMAT),
            "end": self.time_range.end.strftime(UPSTREAM_TIME_FORMAT),
            "orderby": self.sort_order.value,
            "format": self.format,
            "limit": self.pagination.limit,
            "offset": self.pagination.offset,
        }

        if isinstance(self.geo, Rectangle):
            for name in ("minlat", "maxlat", "minlon", "maxlon"):
                value = getattr(self.geo, name)
                if value is not None:
                    params[name] = value
        elif isinstance(self.geo, Radial):
            params["lat"] = self.geo.lat
            params["lon"] = self.geo.lon
            params["maxrad"] = self.geo.maxrad
            if self.geo.minrad is not None:
                params["minrad"] = self.geo.minrad

        for prefix, bounds in (("depth", self.depth), ("mag", self.magnitude)):
            if bounds is None:
                continue
            if bounds.min is not None:
                params[f"min{prefix}"] = bounds.min
            if bounds.max is not None:
                params[f"max{prefix}"] = bounds.max

        if self.magnitude_type:
            params["magtype"] = self.magnitude_type
        if self.event_id is not None:
            params["eventid"] = self.event_id
        return params

    def cache_key(self) -> str:
        # sorted keys: parameter order in the inbound URL never matters
        return json.dumps(self.to_upstream_params(), sort_keys=True, separators=(",", ":"))


class NormalizedEvent(FrozenModel):
    event_id: Optional[str] = None
    occurred_at: datetime
    mag: Optional[float] = None
    mag_type: Optional[str] = None
    depth_km: Optional[float] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    place: Optional[str] = None
    geometry: Optional[Dict[str, Any]] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class EventsEnvelope(BaseModel):
    success: bool = True
    cached: bool
    params: QueryFilter
    count: int
    data: List[NormalizedEvent]
    fetched_at: datetime = Field(serialization_alias="fetchedAt")


class ErrorEnvelope(BaseModel):
    success: bool = False
    code: str
    detail: str
    timestamp: datetime


class HealthOut(BaseModel):
    ok: bool = True
    timestamp: datetime
    service: str
