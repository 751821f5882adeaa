"""
AWS Health Digest Lambda

Flow:
  EventBridge schedule (every 5 minutes) -> this Lambda
  Lists AWS Health events matching config.yaml, enriches them with details and
  affected entities, renders a plain-text report.
  When the status filter excludes 'closed', events that disappeared since the
  last run are reported as closed (diff against the stored open-event snapshot).
  The report's SHA-256 is compared with the last one sent; only a change
  triggers an SES email and a new stored hash.
  Every run stores its report in S3 and truncates the history to MAX_RETAINED.

See health_digest.config for environment variables.
"""
import json
import logging
from typing import Any, Dict, Optional

from .changes import find_closed
from .config import Settings, load_config
from .context import RunContext
from .dedup import should_notify
from .health import enrich, fetch_events, group_by_event
from .notify import send_notification
from .report import combine, render_events
from .store import StateStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def render_section(ctx: RunContext, events, counter_offset: int) -> str:
    if not events:
        return ""
    details, entities = enrich(
        ctx.health,
        [e.arn for e in events],
        max_batch_size=ctx.settings.detail_batch_size,
        concurrency=ctx.settings.enrich_concurrency,
    )
    return render_events(events, details, group_by_event(entities), counter_offset)


def build_store(ctx: RunContext) -> StateStore:
    return StateStore(
        ctx.s3,
        ctx.settings.bucket,
        prefix=ctx.key_prefix,
        list_page_size=ctx.settings.list_page_size,
        delete_batch_size=ctx.settings.delete_batch_size,
    )


def run(ctx: RunContext, store: Optional[StateStore] = None) -> Dict[str, Any]:
    store = store or build_store(ctx)
    track_open = not ctx.config.includes_closed

    events = fetch_events(ctx)
    report = render_section(ctx, events, 1)

    closed = []
    if track_open:
        previous = store.load_snapshot()
        if previous is None:
            logger.info("No previous open-event snapshot; no closures reported this run")
        closed = find_closed(previous, events)
        if closed:
            logger.info(f"{len(closed)} event(s) closed since the last run")
        report = combine(report, render_section(ctx, closed, len(events) + 1))

    notify, new_hash = should_notify(report, store.load_last_hash() if report else "")
    notified = False
    if not report:
        logger.info("No new AWS Health events found since the last notification.")
    elif not notify:
        logger.info(f"Report unchanged (sha256={new_hash}); notification suppressed")
    else:
        # The hash is stored before sending: a failed send is not retried next run.
        store.save_hash(new_hash)
        message_id = send_notification(ctx.ses, ctx.config, ctx.settings.email_subject, report)
        notified = message_id is not None
        logger.debug(report)

    report_key = store.save_report(report)
    deleted = store.truncate_history(ctx.settings.max_retained)

    if track_open:
        store.save_snapshot(events)

    ctx.metrics.add("OpenEvents", len(events))
    ctx.metrics.add("ClosedEvents", len(closed))
    ctx.metrics.add("NotificationsSent", 1 if notified else 0)
    if ctx.settings.publish_metrics:
        ctx.metrics.flush(ctx.cloudwatch)

    return {
        "ok": True,
        "events": len(events),
        "closed": len(closed),
        "notified": notified,
        "hash": new_hash,
        "report_key": report_key,
        "deleted": len(deleted),
    }


def lambda_handler(event, context):
    settings = Settings.from_env()
    if settings.debug:
        logger.setLevel(logging.DEBUG)
    logger.info(f"Health digest start event={json.dumps(event or {}, default=str)}")
    config = load_config(settings.config_file)
    ctx = RunContext(settings, config)
    result = run(ctx)
    logger.info(f"Health digest done: {json.dumps(result)}")
    return result


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print(json.dumps(lambda_handler({}, None), indent=2))
