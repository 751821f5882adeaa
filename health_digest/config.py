"""
Settings and configuration for the AWS Health digest Lambda.

Two layers, both read once per invocation:
  Settings  - environment variables (bucket, regions, batch ceilings, flags)
  Config    - the YAML document (event filter + SES fields + email template)

Environment Variables:
  BUCKET              (required) bucket holding hash, snapshot and history
  DEFAULT_REGION      region of the S3 client (default AWS_REGION / us-east-1)
  CONFIG_FILE         path of the YAML document (default config.yaml)
  HEALTH_REGION       AWS Health endpoint region (default us-east-1)
  STATE_KEY_PREFIX    prefix for every stored key (default: account name)
  DETAIL_BATCH_SIZE   ARNs per DescribeEventDetails call (default 5)
  DELETE_BATCH_SIZE   keys per DeleteObjects call (default 500)
  LIST_PAGE_SIZE      MaxKeys per ListObjectsV2 page (default 2017)
  MAX_RETAINED        history reports kept in the bucket (default 2016)
  LOOKBACK_MONTHS     start-time window when 'closed' is requested (default 3)
  ENRICH_CONCURRENCY  worker threads for enrichment batches (default 4)
  PUBLISH_METRICS     push run metrics to CloudWatch (default false)
  METRICS_NAMESPACE   CloudWatch namespace (default AWS-Health-Checker)
  EMAIL_SUBJECT       subject line of the notification
  DEBUG_MODE          debug logging (default false)
"""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

# ---- Constants ----
# The trigger fires every 5 minutes and history covers one week:
# 60 / 5 * 24 * 7 = 2016 reports, +1 so a single list page also holds the hash object.
TRIGGER_INTERVAL_MINUTES = 5
RETENTION_DAYS = 7
MAX_RETAINED_DEFAULT = (60 // TRIGGER_INTERVAL_MINUTES) * 24 * RETENTION_DAYS
LIST_PAGE_SIZE_DEFAULT = MAX_RETAINED_DEFAULT + 1

# DescribeEventDetails takes at most 10 ARNs and 1600 characters per request.
DETAIL_BATCH_SIZE_DEFAULT = 5
# DeleteObjects takes 1000 keys; half of it avoids MalformedXML on large bodies.
DELETE_BATCH_SIZE_DEFAULT = 500
# DescribeEvents returns the full history for 'closed' unless bounded.
LOOKBACK_MONTHS_DEFAULT = 3

CLOSED_STATUS = "closed"
DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_SUBJECT = "[aws-health-digest] Found new health events"
DEFAULT_TEMPLATE = "AWS Health events:\n\n{report}"


class ConfigError(ValueError):
    """Raised when settings or the YAML document are unusable."""


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class Settings:
    bucket: str
    default_region: str = "us-east-1"
    config_file: str = DEFAULT_CONFIG_FILE
    health_region: str = "us-east-1"
    state_key_prefix: Optional[str] = None
    detail_batch_size: int = DETAIL_BATCH_SIZE_DEFAULT
    delete_batch_size: int = DELETE_BATCH_SIZE_DEFAULT
    list_page_size: int = LIST_PAGE_SIZE_DEFAULT
    max_retained: int = MAX_RETAINED_DEFAULT
    lookback_months: int = LOOKBACK_MONTHS_DEFAULT
    enrich_concurrency: int = 4
    publish_metrics: bool = False
    metrics_namespace: str = "AWS-Health-Checker"
    email_subject: str = DEFAULT_SUBJECT
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            bucket=os.environ.get("BUCKET", ""),
            default_region=os.environ.get("DEFAULT_REGION") or os.environ.get("AWS_REGION", "us-east-1"),
            config_file=os.environ.get("CONFIG_FILE") or DEFAULT_CONFIG_FILE,
            health_region=os.environ.get("HEALTH_REGION", "us-east-1"),
            state_key_prefix=os.environ.get("STATE_KEY_PREFIX"),
            detail_batch_size=_env_int("DETAIL_BATCH_SIZE", DETAIL_BATCH_SIZE_DEFAULT),
            delete_batch_size=_env_int("DELETE_BATCH_SIZE", DELETE_BATCH_SIZE_DEFAULT),
            list_page_size=_env_int("LIST_PAGE_SIZE", LIST_PAGE_SIZE_DEFAULT),
            max_retained=_env_int("MAX_RETAINED", MAX_RETAINED_DEFAULT),
            lookback_months=_env_int("LOOKBACK_MONTHS", LOOKBACK_MONTHS_DEFAULT),
            enrich_concurrency=_env_int("ENRICH_CONCURRENCY", 4),
            publish_metrics=_env_flag("PUBLISH_METRICS"),
            metrics_namespace=os.environ.get("METRICS_NAMESPACE", "AWS-Health-Checker"),
            email_subject=os.environ.get("EMAIL_SUBJECT", DEFAULT_SUBJECT),
            debug=_env_flag("DEBUG_MODE"),
        )
        settings.validate()
        return settings

    def validate(self):
        if not self.bucket:
            raise ConfigError("Missing required environment variable: BUCKET")
        positive = {
            "DETAIL_BATCH_SIZE": self.detail_batch_size,
            "DELETE_BATCH_SIZE": self.delete_batch_size,
            "LIST_PAGE_SIZE": self.list_page_size,
            "MAX_RETAINED": self.max_retained,
            "LOOKBACK_MONTHS": self.lookback_months,
            "ENRICH_CONCURRENCY": self.enrich_concurrency,
        }
        bad = [name for name, value in positive.items() if value < 1]
        if bad:
            raise ConfigError(f"Settings must be positive: {bad}")
        if self.detail_batch_size > 10:
            raise ConfigError("DETAIL_BATCH_SIZE cannot exceed the DescribeEventDetails limit of 10")
        if self.delete_batch_size > 1000:
            raise ConfigError("DELETE_BATCH_SIZE cannot exceed the DeleteObjects limit of 1000")


@dataclass
class Config:
    regions: List[str] = field(default_factory=list)
    category: List[str] = field(default_factory=list)
    status: List[str] = field(default_factory=list)
    tags: List[Dict[str, str]] = field(default_factory=list)
    ses_region: str = "us-east-1"
    ses_from: str = ""
    ses_send: str = ""
    email_template: str = DEFAULT_TEMPLATE

    @property
    def includes_closed(self) -> bool:
        return any((s or "").lower() == CLOSED_STATUS for s in self.status)

    @property
    def recipients(self) -> List[str]:
        return [r.strip() for r in self.ses_send.split(",") if r.strip()]

    @classmethod
    def from_dict(cls, raw: Dict) -> "Config":
        def _list(key):
            value = raw.get(key) or []
            if isinstance(value, str):
                return [value]
            if not isinstance(value, list):
                raise ConfigError(f"'{key}' must be a list")
            return [str(v) for v in value]

        tags = raw.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, dict) for t in tags):
            raise ConfigError("'tags' must be a list of key/value mappings")

        return cls(
            regions=_list("regions"),
            category=_list("category"),
            status=_list("status"),
            tags=[{str(k): str(v) for k, v in t.items()} for t in tags],
            ses_region=str(raw.get("ses_region") or "us-east-1"),
            ses_from=str(raw.get("ses_from") or ""),
            ses_send=str(raw.get("ses_send") or ""),
            email_template=str(raw.get("email_template") or DEFAULT_TEMPLATE),
        )


def load_config(path: str) -> Config:
    config_path = Path(path)
    logger.info(f"Loading config settings from: {config_path}")
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return Config.from_dict(raw)
