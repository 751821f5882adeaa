"""Data models for AWS Health events and stored artifacts."""
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from dateutil import parser as dtparser
from dateutil import tz

UTC = tz.UTC

# Display name -> attribute, in the order they are dumped into a report.
# Sorted by display name; changing this changes every report hash.
EVENT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("Arn", "arn"),
    ("AvailabilityZone", "availability_zone"),
    ("EndTime", "end_time"),
    ("EventScopeCode", "event_scope_code"),
    ("EventTypeCategory", "event_type_category"),
    ("EventTypeCode", "event_type_code"),
    ("LastUpdatedTime", "last_updated_time"),
    ("Region", "region"),
    ("Service", "service"),
    ("StartTime", "start_time"),
    ("StatusCode", "status_code"),
)

ENTITY_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("ARN", "entity_arn"),
    ("URL", "entity_url"),
    ("Value", "entity_value"),
    ("Status Code", "status_code"),
    ("Last Updated Time", "last_updated_time"),
)

_EVENT_API_KEYS = {
    "arn": "arn",
    "service": "service",
    "eventTypeCode": "event_type_code",
    "eventTypeCategory": "event_type_category",
    "region": "region",
    "availabilityZone": "availability_zone",
    "startTime": "start_time",
    "endTime": "end_time",
    "lastUpdatedTime": "last_updated_time",
    "statusCode": "status_code",
    "eventScopeCode": "event_scope_code",
}
_TIME_ATTRS = {"start_time", "end_time", "last_updated_time"}


def to_utc(value: Any) -> Optional[dt.datetime]:
    """Coerce an SDK datetime or an ISO string into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = dtparser.isoparse(value)
    if not isinstance(value, dt.datetime):
        raise TypeError(f"Unsupported timestamp {value!r} ({type(value)})")
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def iso_z(ts: Optional[dt.datetime]) -> Optional[str]:
    if ts is None:
        return None
    return to_utc(ts).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Event:
    """
    One AWS Health event.

    Identity is the ARN only: two Event objects with the same ARN are equal
    and hash alike even when their status or timestamps differ, which is what
    the open-event snapshot diff relies on.
    """
    arn: str
    service: Optional[str] = field(default=None, compare=False)
    event_type_code: Optional[str] = field(default=None, compare=False)
    event_type_category: Optional[str] = field(default=None, compare=False)
    region: Optional[str] = field(default=None, compare=False)
    availability_zone: Optional[str] = field(default=None, compare=False)
    start_time: Optional[dt.datetime] = field(default=None, compare=False)
    end_time: Optional[dt.datetime] = field(default=None, compare=False)
    last_updated_time: Optional[dt.datetime] = field(default=None, compare=False)
    status_code: Optional[str] = field(default=None, compare=False)
    event_scope_code: Optional[str] = field(default=None, compare=False)
    tags: Dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Event":
        kwargs = {}
        for api_key, attr in _EVENT_API_KEYS.items():
            value = item.get(api_key)
            kwargs[attr] = to_utc(value) if attr in _TIME_ATTRS else value
        kwargs["tags"] = dict(item.get("tags") or {})
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for api_key, attr in _EVENT_API_KEYS.items():
            value = getattr(self, attr)
            out[api_key] = iso_z(value) if attr in _TIME_ATTRS else value
        out["tags"] = dict(self.tags)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        if not data.get("arn"):
            raise ValueError(f"Event record without arn: {data!r}")
        return cls.from_api(data)


@dataclass(frozen=True)
class EventDetail:
    event_arn: str
    latest_description: str = ""
    # Event as returned alongside the detail; rendered in place of the caller's copy.
    event: Optional[Event] = field(default=None, compare=False)

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "EventDetail":
        event = item.get("event") or {}
        description = item.get("eventDescription") or {}
        return cls(
            event_arn=event.get("arn", ""),
            latest_description=description.get("latestDescription") or "",
            event=Event.from_api(event) if event.get("arn") else None,
        )


@dataclass(frozen=True)
class AffectedEntity:
    event_arn: str
    entity_arn: Optional[str] = None
    entity_url: Optional[str] = None
    entity_value: Optional[str] = None
    status_code: Optional[str] = None
    last_updated_time: Optional[dt.datetime] = None
    aws_account_id: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "AffectedEntity":
        return cls(
            event_arn=item.get("eventArn", ""),
            entity_arn=item.get("entityArn"),
            entity_url=item.get("entityUrl"),
            entity_value=item.get("entityValue"),
            status_code=item.get("statusCode"),
            last_updated_time=to_utc(item.get("lastUpdatedTime")),
            aws_account_id=item.get("awsAccountId"),
            tags=dict(item.get("tags") or {}),
        )

    def sorted_tags(self) -> List[Tuple[str, str]]:
        return sorted(self.tags.items(), key=lambda kv: (kv[0], kv[1]))


@dataclass
class EventFilter:
    regions: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    tags: List[Dict[str, str]] = field(default_factory=list)
    start_times: Optional[List[Tuple[dt.datetime, dt.datetime]]] = None
    end_times: Optional[List[Tuple[dt.datetime, dt.datetime]]] = None

    def to_api(self) -> Dict[str, Any]:
        """Build the DescribeEvents `filter` argument; empty lists are omitted."""
        api: Dict[str, Any] = {}
        if self.regions:
            api["regions"] = list(self.regions)
        if self.categories:
            api["eventTypeCategories"] = list(self.categories)
        if self.statuses:
            api["eventStatusCodes"] = list(self.statuses)
        if self.tags:
            api["tags"] = [dict(t) for t in self.tags]
        if self.start_times:
            api["startTimes"] = [{"from": f, "to": t} for f, t in self.start_times]
        if self.end_times:
            api["endTimes"] = [{"from": f, "to": t} for f, t in self.end_times]
        return api


@dataclass(frozen=True)
class StoredObject:
    key: str
    last_modified: dt.datetime
