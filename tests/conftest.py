from __future__ import annotations

import datetime as dt
import io
import sys
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from health_digest.config import Config, Settings
from health_digest.context import RunContext

UTC = dt.timezone.utc
BASE_TIME = dt.datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


def client_error(code, operation="Operation", message="boom"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def api_event(arn, start_hours=0, status="open", **extra):
    item = {
        "arn": arn,
        "service": "EC2",
        "eventTypeCode": "AWS_EC2_OPERATIONAL_ISSUE",
        "eventTypeCategory": "issue",
        "region": "us-east-1",
        "startTime": BASE_TIME + dt.timedelta(hours=start_hours),
        "lastUpdatedTime": BASE_TIME + dt.timedelta(hours=start_hours, minutes=5),
        "statusCode": status,
        "eventScopeCode": "ACCOUNT_SPECIFIC",
    }
    item.update(extra)
    return item


def api_entity(event_arn, entity_arn, tags=None, value=None):
    return {
        "eventArn": event_arn,
        "entityArn": entity_arn,
        "entityValue": value or entity_arn.rsplit("/", 1)[-1],
        "entityUrl": f"https://console.aws.amazon.com/{entity_arn}",
        "statusCode": "IMPAIRED",
        "lastUpdatedTime": BASE_TIME,
        "awsAccountId": "123456789012",
        "tags": tags or {},
    }


class FakeHealth:
    def __init__(self, events=None, descriptions=None, entities=None, failed=(),
                 page_size=2, entity_page_size=2, detail_events=None):
        self.events = list(events or [])
        self.descriptions = dict(descriptions or {})
        self.entities = list(entities or [])
        self.failed = set(failed)
        self.detail_events = dict(detail_events or {})
        self.page_size = page_size
        self.entity_page_size = entity_page_size
        self.event_calls = []
        self.detail_calls = []
        self.entity_calls = []

    @staticmethod
    def _page(items, token, size):
        start = int(token or 0)
        page = items[start:start + size]
        nxt = start + size
        return page, (str(nxt) if nxt < len(items) else None)

    def describe_events(self, **kwargs):
        self.event_calls.append(kwargs)
        page, token = self._page(self.events, kwargs.get("nextToken"), self.page_size)
        resp = {"events": page}
        if token:
            resp["nextToken"] = token
        return resp

    def describe_event_details(self, eventArns):
        if len(eventArns) > 10:
            raise client_error("ValidationException", "DescribeEventDetails")
        self.detail_calls.append(list(eventArns))
        by_arn = {e["arn"]: e for e in self.events}
        ok, failed = [], []
        for arn in eventArns:
            if arn in self.failed:
                failed.append({"eventArn": arn, "errorName": "UnsupportedEventType", "errorMessage": "nope"})
                continue
            ok.append({
                "event": self.detail_events.get(arn) or by_arn.get(arn, {"arn": arn}),
                "eventDescription": {"latestDescription": self.descriptions.get(arn, f"Description of {arn}")},
                "eventMetadata": {},
            })
        return {"successfulSet": ok, "failedSet": failed}

    def describe_affected_entities(self, **kwargs):
        self.entity_calls.append(kwargs)
        wanted = set(kwargs["filter"]["eventArns"])
        matching = [e for e in self.entities if e["eventArn"] in wanted]
        page, token = self._page(matching, kwargs.get("nextToken"), self.entity_page_size)
        resp = {"entities": page}
        if token:
            resp["nextToken"] = token
        return resp


class FakeS3:
    def __init__(self):
        self.objects = {}
        self.clock = BASE_TIME
        self.puts = []
        self.delete_batches = []
        self.list_calls = []
        self.undeletable = set()
        self.fail_put_keys = set()
        self.fail_get = False

    def _tick(self):
        self.clock += dt.timedelta(minutes=5)
        return self.clock

    def seed(self, key, body, last_modified):
        data = body.encode("utf-8") if isinstance(body, str) else body
        self.objects[key] = (data, last_modified)

    def text(self, key):
        return self.objects[key][0].decode("utf-8")

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise client_error("404", "HeadObject", "Not Found")
        return {"ContentLength": len(self.objects[Key][0])}

    def get_object(self, Bucket, Key):
        if self.fail_get:
            raise client_error("AccessDenied", "GetObject")
        if Key not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key][0])}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        if Key in self.fail_put_keys:
            raise client_error("AccessDenied", "PutObject")
        self.puts.append(Key)
        self.objects[Key] = (Body, self._tick())
        return {"ETag": "etag"}

    def list_objects_v2(self, Bucket, Prefix="", MaxKeys=1000, ContinuationToken=None):
        self.list_calls.append({"Prefix": Prefix, "MaxKeys": MaxKeys, "ContinuationToken": ContinuationToken})
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + MaxKeys]
        resp = {
            "Contents": [{"Key": k, "LastModified": self.objects[k][1], "Size": len(self.objects[k][0])} for k in page],
            "IsTruncated": start + MaxKeys < len(keys),
        }
        if resp["IsTruncated"]:
            resp["NextContinuationToken"] = str(start + MaxKeys)
        return resp

    def delete_objects(self, Bucket, Delete):
        keys = [o["Key"] for o in Delete["Objects"]]
        self.delete_batches.append(keys)
        deleted, errors = [], []
        for key in keys:
            if key in self.undeletable:
                errors.append({"Key": key, "Code": "AccessDenied", "Message": "denied"})
                continue
            self.objects.pop(key, None)
            deleted.append({"Key": key})
        return {"Deleted": deleted, "Errors": errors}


class FakeSES:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_raw_email(self, Source, Destinations, RawMessage):
        if self.fail:
            raise client_error("MessageRejected", "SendRawEmail")
        self.sent.append({"Source": Source, "Destinations": Destinations, "Data": RawMessage["Data"]})
        return {"MessageId": f"msg-{len(self.sent)}"}


class FakeCloudWatch:
    def __init__(self):
        self.calls = []

    def put_metric_data(self, Namespace, MetricData):
        self.calls.append({"Namespace": Namespace, "MetricData": list(MetricData)})
        return {}


class FakeSTS:
    def get_caller_identity(self):
        return {"Account": "123456789012"}


class FakeOrganizations:
    def __init__(self, name="prod-account", fail=False):
        self.name = name
        self.fail = fail

    def describe_account(self, AccountId):
        if self.fail:
            raise client_error("AWSOrganizationsNotInUseException", "DescribeAccount")
        return {"Account": {"Id": AccountId, "Name": self.name}}


class FakeSession:
    def __init__(self, **clients):
        self.clients = clients
        self.requested = []

    def client(self, service, region_name=None):
        self.requested.append((service, region_name))
        return self.clients[service]


@pytest.fixture
def health():
    return FakeHealth()


@pytest.fixture
def s3():
    return FakeS3()


@pytest.fixture
def ses():
    return FakeSES()


@pytest.fixture
def cloudwatch():
    return FakeCloudWatch()


@pytest.fixture
def session(health, s3, ses, cloudwatch):
    return FakeSession(
        health=health,
        s3=s3,
        ses=ses,
        cloudwatch=cloudwatch,
        sts=FakeSTS(),
        organizations=FakeOrganizations(),
    )


@pytest.fixture
def settings():
    return Settings(bucket="health-bucket", state_key_prefix="acct-", enrich_concurrency=1)


@pytest.fixture
def config():
    return Config(
        regions=["us-east-1"],
        category=["issue"],
        status=["open"],
        ses_region="us-east-1",
        ses_from="digest@example.com",
        ses_send="ops@example.com, oncall@example.com",
        email_template="Health events:\n\n{report}",
    )


@pytest.fixture
def ctx(settings, config, session):
    return RunContext(settings, config, session=session)
