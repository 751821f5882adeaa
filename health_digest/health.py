"""
AWS Health retrieval: event listing and detail/entity enrichment.

Errors from the Health API are not caught here. A failed fetch fails the
run and the next scheduled invocation starts again from the stored state.
"""
import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .config import CLOSED_STATUS, DETAIL_BATCH_SIZE_DEFAULT
from .models import AffectedEntity, Event, EventDetail, EventFilter, UTC

logger = logging.getLogger(__name__)


def now_utc() -> dt.datetime:
    return dt.datetime.now(tz=UTC).replace(microsecond=0)


def chunked(items: List, n: int) -> Iterable[List]:
    for i in range(0, len(items), n):
        yield items[i:i + n]


# ---- Events ----
def build_filter(config, lookback_months: int, now: Optional[dt.datetime] = None) -> EventFilter:
    event_filter = EventFilter(
        regions=config.regions,
        categories=config.category,
        statuses=config.status,
        tags=config.tags,
    )
    if config.includes_closed:
        # Without a start window DescribeEvents returns every closed event ever recorded.
        now = now or now_utc()
        event_filter.start_times = [(now - relativedelta(months=lookback_months), now)]
    return event_filter


def describe_events(health, event_filter: EventFilter) -> List[Event]:
    statuses = {(s or "").lower() for s in event_filter.statuses}
    if CLOSED_STATUS in statuses and not event_filter.start_times:
        raise ValueError("A start-time range is required when filtering on closed events")

    events: List[Event] = []
    seen = set()
    kwargs = {"filter": event_filter.to_api()}
    pages = 0
    while True:
        resp = health.describe_events(**kwargs)
        pages += 1
        for item in resp.get("events", []):
            event = Event.from_api(item)
            if event.arn in seen:
                logger.warning(f"Duplicate event in describe_events result: {event.arn}")
                continue
            seen.add(event.arn)
            events.append(event)
        token = resp.get("nextToken")
        if not token:
            break
        kwargs["nextToken"] = token
    logger.info(f"describe_events returned {len(events)} events in {pages} page(s)")
    return events


def fetch_events(ctx) -> List[Event]:
    event_filter = build_filter(ctx.config, ctx.settings.lookback_months)
    return describe_events(ctx.health, event_filter)


# ---- Details & affected entities ----
def describe_event_details(health, arns: List[str]) -> List[EventDetail]:
    resp = health.describe_event_details(eventArns=list(arns))
    for failed in resp.get("failedSet", []):
        logger.warning(
            f"Event details unavailable for {failed.get('eventArn')}: "
            f"{failed.get('errorName')} {failed.get('errorMessage')}"
        )
    return [EventDetail.from_api(item) for item in resp.get("successfulSet", [])]


def describe_affected_entities(health, arns: List[str]) -> List[AffectedEntity]:
    entities: List[AffectedEntity] = []
    kwargs = {"filter": {"eventArns": list(arns)}}
    while True:
        resp = health.describe_affected_entities(**kwargs)
        entities.extend(AffectedEntity.from_api(item) for item in resp.get("entities", []))
        token = resp.get("nextToken")
        if not token:
            break
        kwargs["nextToken"] = token
    return entities


def _enrich_batch(health, batch: List[str]) -> Tuple[List[EventDetail], List[AffectedEntity]]:
    return describe_event_details(health, batch), describe_affected_entities(health, batch)


def enrich(health, arns: List[str], max_batch_size: int = DETAIL_BATCH_SIZE_DEFAULT,
           concurrency: int = 1) -> Tuple[Dict[str, EventDetail], List[AffectedEntity]]:
    """
    Fetch details and affected entities for `arns` in batches of `max_batch_size`.

    Batches are independent and may run on a thread pool; results are merged
    in batch order so the output does not depend on completion order.
    """
    unique_arns = list(dict.fromkeys(arns))
    if not unique_arns:
        return {}, []

    batches = list(chunked(unique_arns, max_batch_size))
    results: List[Optional[Tuple[List[EventDetail], List[AffectedEntity]]]] = [None] * len(batches)
    max_workers = min(concurrency, len(batches)) or 1
    with ThreadPoolExecutor(max_workers=max_workers) as ex:
        futures = {ex.submit(_enrich_batch, health, batch): idx for idx, batch in enumerate(batches)}
        for fut in as_completed(futures):
            results[futures[fut]] = fut.result()

    details: Dict[str, EventDetail] = {}
    entities: List[AffectedEntity] = []
    for batch_details, batch_entities in results:
        for detail in batch_details:
            details[detail.event_arn] = detail
        entities.extend(batch_entities)
    logger.info(f"Enriched {len(unique_arns)} events in {len(batches)} batch(es): "
                f"{len(details)} details, {len(entities)} affected entities")
    return details, entities


def group_by_event(entities: Iterable[AffectedEntity]) -> Dict[str, List[AffectedEntity]]:
    """Index affected entities by the content of their event ARN."""
    grouped: Dict[str, List[AffectedEntity]] = {}
    for entity in entities:
        grouped.setdefault(str(entity.event_arn), []).append(entity)
    return grouped
