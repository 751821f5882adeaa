"""
S3-backed state for the digest.

Three independent artifacts per account prefix:
  <prefix>AWSHealthCheckHashResult.txt                  hash of the last report sent
  <prefix>EventsNotificationSent.json                   open events seen by the last run
  <prefix>AWSHealthCheckResultEvents_<ts>.txt           one rendered report per run

There is no transaction across them. Each read degrades to "absent" on error
and each write is best effort, so a run that dies between two writes leaves
the next run working from whichever artifacts were completed.
"""
import datetime as dt
import json
import logging
from typing import List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from .config import DELETE_BATCH_SIZE_DEFAULT, LIST_PAGE_SIZE_DEFAULT
from .models import UTC, Event, StoredObject, to_utc

logger = logging.getLogger(__name__)

HASH_NAME = "AWSHealthCheckHashResult.txt"
SNAPSHOT_NAME = "EventsNotificationSent.json"
HISTORY_NAME = "AWSHealthCheckResultEvents_"
HISTORY_TS_FORMAT = "%Y%m%d-%H%M%S"
SNAPSHOT_VERSION = 1

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def select_expired(objects: Sequence[StoredObject], max_retained: int) -> List[str]:
    """Keys to delete so at most `max_retained` remain, oldest first."""
    excess = len(objects) - max_retained
    if excess <= 0:
        return []
    ordered = sorted(objects, key=lambda o: (o.last_modified, o.key))
    return [o.key for o in ordered[:excess]]


class StateStore:
    def __init__(self, s3, bucket: str, prefix: str = "",
                 list_page_size: int = LIST_PAGE_SIZE_DEFAULT,
                 delete_batch_size: int = DELETE_BATCH_SIZE_DEFAULT):
        self.s3 = s3
        self.bucket = bucket
        self.prefix = prefix
        self.list_page_size = list_page_size
        self.delete_batch_size = delete_batch_size

    @property
    def hash_key(self) -> str:
        return f"{self.prefix}{HASH_NAME}"

    @property
    def snapshot_key(self) -> str:
        return f"{self.prefix}{SNAPSHOT_NAME}"

    @property
    def history_prefix(self) -> str:
        return f"{self.prefix}{HISTORY_NAME}"

    def history_key(self, when: dt.datetime) -> str:
        return f"{self.history_prefix}{when.astimezone(UTC).strftime(HISTORY_TS_FORMAT)}.txt"

    # ---- Primitives ----
    def exists(self, key: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            logger.error(f"S3 head failed for {key}: {e}")
            return False
        except BotoCoreError as e:
            logger.error(f"S3 head failed for {key}: {e}")
            return False

    def get_text(self, key: str) -> Optional[str]:
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read().decode("utf-8")
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                logger.info(f"s3://{self.bucket}/{key} not found")
                return None
            logger.error(f"S3 read failed for {key}: {e}")
            return None
        except (BotoCoreError, UnicodeDecodeError) as e:
            logger.error(f"S3 read failed for {key}: {e}")
            return None

    def put_text(self, key: str, body: str, content_type: str = "text/plain; charset=utf-8") -> bool:
        data = body.encode("utf-8")
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 write failed for {key}: {e}")
            return False
        logger.info(f"Wrote s3://{self.bucket}/{key} ({len(data)} bytes)")
        return True

    def list_objects(self, prefix: str) -> List[StoredObject]:
        objects: List[StoredObject] = []
        kwargs = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": self.list_page_size}
        try:
            while True:
                resp = self.s3.list_objects_v2(**kwargs)
                for obj in resp.get("Contents", []):
                    objects.append(StoredObject(key=obj["Key"], last_modified=to_utc(obj["LastModified"])))
                if not resp.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = resp.get("NextContinuationToken")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 list failed for prefix {prefix!r}: {e}")
        return objects

    def delete_keys(self, keys: Sequence[str]) -> List[str]:
        """Delete in batches; returns the keys S3 reports as deleted."""
        deleted: List[str] = []
        for i in range(0, len(keys), self.delete_batch_size):
            batch = keys[i:i + self.delete_batch_size]
            try:
                resp = self.s3.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as e:
                logger.error(f"S3 delete batch of {len(batch)} keys failed: {e}")
                continue
            deleted.extend(d["Key"] for d in resp.get("Deleted", []))
            for err in resp.get("Errors", []):
                logger.warning(f"S3 delete error for {err.get('Key')}: {err.get('Code')} {err.get('Message')}")
        return deleted

    # ---- Hash ----
    def load_last_hash(self) -> str:
        if not self.exists(self.hash_key):
            logger.warning(f"No stored hash at s3://{self.bucket}/{self.hash_key}")
            return ""
        return (self.get_text(self.hash_key) or "").strip()

    def save_hash(self, value: str) -> bool:
        return self.put_text(self.hash_key, value)

    # ---- Open-event snapshot ----
    def load_snapshot(self) -> Optional[List[Event]]:
        raw = self.get_text(self.snapshot_key)
        if raw is None:
            return None
        try:
            doc = json.loads(raw)
            if doc.get("version") != SNAPSHOT_VERSION:
                raise ValueError(f"unsupported snapshot version {doc.get('version')!r}")
            return [Event.from_dict(item) for item in doc["events"]]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable snapshot {self.snapshot_key}: {e}")
            return None

    def save_snapshot(self, events: Sequence[Event]) -> bool:
        doc = {
            "version": SNAPSHOT_VERSION,
            "events": [e.to_dict() for e in events],
        }
        return self.put_text(self.snapshot_key, json.dumps(doc, sort_keys=True), "application/json")

    # ---- History ----
    def save_report(self, report: str, when: Optional[dt.datetime] = None) -> Optional[str]:
        key = self.history_key(when or dt.datetime.now(tz=UTC))
        return key if self.put_text(key, report) else None

    def list_history(self) -> List[StoredObject]:
        return self.list_objects(self.history_prefix)

    def truncate_history(self, max_retained: int) -> List[str]:
        objects = self.list_history()
        expired = select_expired(objects, max_retained)
        if not expired:
            logger.info(f"History holds {len(objects)} report(s), nothing to truncate")
            return []
        deleted = self.delete_keys(expired)
        failed = sorted(set(expired) - set(deleted))
        if failed:
            logger.error("S3 delete failed for the following files:")
            for key in failed:
                logger.error(key)
        logger.info(f"Truncated history: {len(deleted)} of {len(expired)} expired report(s) deleted")
        return deleted
