"""Data objects returned by the activity API client."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .quota import QuotaSnapshot


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the API.

    Returns None for empty values. Naive results are assumed to be UTC.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_float(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Activity:
    """One activity as reported by the list endpoint.

    Optional fields are None when the API omitted them; a reported zero stays
    zero here. Mapping zero to absent is a storage concern.
    """

    id: int
    name: str = ""
    distance: Optional[float] = None
    moving_time: Optional[int] = None
    elapsed_time: Optional[int] = None
    total_elevation_gain: Optional[float] = None
    type: Optional[str] = None
    sport_type: Optional[str] = None
    start_date: Optional[datetime] = None
    start_date_local: Optional[datetime] = None
    timezone: Optional[str] = None
    average_speed: Optional[float] = None
    max_speed: Optional[float] = None
    average_cadence: Optional[float] = None
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None
    kilojoules: Optional[float] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Activity":
        if "id" not in data:
            raise ValueError("activity payload is missing 'id'")

        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            distance=_optional_float(data, "distance"),
            moving_time=_optional_int(data, "moving_time"),
            elapsed_time=_optional_int(data, "elapsed_time"),
            total_elevation_gain=_optional_float(data, "total_elevation_gain"),
            type=data.get("type"),
            sport_type=data.get("sport_type"),
            start_date=parse_timestamp(data.get("start_date")),
            start_date_local=parse_timestamp(data.get("start_date_local")),
            timezone=data.get("timezone"),
            average_speed=_optional_float(data, "average_speed"),
            max_speed=_optional_float(data, "max_speed"),
            average_cadence=_optional_float(data, "average_cadence"),
            average_heartrate=_optional_float(data, "average_heartrate"),
            max_heartrate=_optional_float(data, "max_heartrate"),
            kilojoules=_optional_float(data, "kilojoules"),
        )


@dataclass
class ZoneBucket:
    """Time spent in one zone range. ``range_max`` is -1 for the open top bucket."""

    index: int
    range_min: int
    range_max: int
    measure: int

    @classmethod
    def from_api(cls, index: int, data: Dict[str, Any]) -> "ZoneBucket":
        return cls(
            index=index,
            range_min=int(data.get("min", 0)),
            range_max=int(data.get("max", 0)),
            measure=int(float(data.get("time", 0))),
        )


@dataclass
class ActivityZone:
    """One zone distribution (``heartrate`` or ``power``) for an activity."""

    zone_type: str
    sensor_based: bool = False
    buckets: List[ZoneBucket] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ActivityZone":
        buckets = [
            ZoneBucket.from_api(i, bucket)
            for i, bucket in enumerate(data.get("distribution_buckets") or [], start=1)
        ]
        return cls(
            zone_type=str(data.get("type", "")),
            sensor_based=bool(data.get("sensor_based", False)),
            buckets=buckets,
        )


@dataclass
class PageResult:
    """Items of one list page together with the quota state after fetching it."""

    items: List[Activity]
    quota: QuotaSnapshot
    retried: bool = False


@dataclass
class FetchPage:
    """Progress report for one fetched page."""

    items: List[Activity]
    page: int
    cumulative_count: int
    quota: QuotaSnapshot
    retried: bool = False

    @property
    def item_count(self) -> int:
        return len(self.items)
