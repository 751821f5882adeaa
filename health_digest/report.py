"""
Plain-text report rendering.

The rendered text is hashed to decide whether anything changed, so output must
be a pure function of its inputs: fields are dumped in the fixed order of
EVENT_FIELDS/ENTITY_FIELDS and events are sorted by start time (newest first)
with the ARN as tie-breaker.
"""
import datetime as dt
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import ENTITY_FIELDS, EVENT_FIELDS, UTC, AffectedEntity, Event, EventDetail, iso_z

Row = Tuple[Event, Optional[EventDetail], List[AffectedEntity]]

_OLDEST = dt.datetime.min.replace(tzinfo=UTC)


def format_value(value) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, dt.datetime):
        return iso_z(value)
    return str(value)


def _add(lines: List[str], s: str = ""):
    lines.append(s)


def join_rows(events: Iterable[Event],
              details_by_arn: Mapping[str, EventDetail],
              entities_by_arn: Mapping[str, Sequence[AffectedEntity]]) -> List[Row]:
    """Pair each event with its detail and entities; the detail's own event wins when present."""
    rows: List[Row] = []
    for event in events:
        key = str(event.arn)
        detail = details_by_arn.get(key)
        if detail is not None and detail.event is not None:
            event = detail.event
        rows.append((event, detail, list(entities_by_arn.get(key, []))))
    return rows


def sort_for_report(rows: List[Row]) -> List[Row]:
    rows = sorted(rows, key=lambda r: r[0].arn)
    return sorted(rows, key=lambda r: r[0].start_time or _OLDEST, reverse=True)


def _entity_sort_key(entity: AffectedEntity):
    return tuple(format_value(getattr(entity, attr)) for _, attr in ENTITY_FIELDS)


def render_block(num: int, event: Event, detail: Optional[EventDetail],
                 entities: Sequence[AffectedEntity]) -> str:
    lines: List[str] = []
    _add(lines, f"Event {num})")
    for name, attr in EVENT_FIELDS:
        _add(lines, f"{name}: {format_value(getattr(event, attr))}")
    _add(lines)

    _add(lines, "\tSummary:")
    _add(lines)
    description = (detail.latest_description if detail else "").rstrip()
    for line in description.splitlines() or ["-"]:
        _add(lines, f"\t{line}")

    if entities:
        _add(lines)
        _add(lines, "\t\tAffected resources:")
        _add(lines)
    for entity in sorted(entities, key=_entity_sort_key):
        for name, attr in ENTITY_FIELDS:
            _add(lines, f"\t\t{name}: {format_value(getattr(entity, attr))}")
        tags = entity.sorted_tags()
        if tags:
            _add(lines, "\t\tTags:")
        for key, value in tags:
            _add(lines, f"\t\t\tKey: {key}\tValue: {value}")
    return "\n".join(lines)


def render_events(events: Iterable[Event],
                  details_by_arn: Mapping[str, EventDetail],
                  entities_by_arn: Mapping[str, Sequence[AffectedEntity]],
                  counter_offset: int = 1) -> str:
    """Render events as numbered blocks starting at `counter_offset`. No events gives ''."""
    rows = sort_for_report(join_rows(events, details_by_arn, entities_by_arn))
    if not rows:
        return ""
    blocks = [render_block(num, *row) for num, row in enumerate(rows, start=counter_offset)]
    return "\n\n\n".join(blocks) + "\n"


def combine(*sections: str) -> str:
    """Concatenate rendered sections, keeping the block separator between them."""
    parts = [s.rstrip("\n") for s in sections if s and s.strip()]
    if not parts:
        return ""
    return "\n\n\n".join(parts) + "\n"
