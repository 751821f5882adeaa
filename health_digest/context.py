"""
Run context: one object per Lambda invocation.

Holds the settings and YAML config, a boto3 session with a client cache keyed
by (service, region), and the run's metric buffer. Components receive the
context instead of reaching for module-level clients.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Config, Settings
from .metrics import MetricsBuffer

logger = logging.getLogger(__name__)


class RunContext:
    def __init__(self, settings: Settings, config: Config, session=None):
        self.settings = settings
        self.config = config
        self.session = session or boto3.session.Session()
        self.metrics = MetricsBuffer(settings.metrics_namespace)
        self._clients: Dict[Tuple[str, str], Any] = {}
        self._key_prefix: Optional[str] = settings.state_key_prefix

    def client(self, service: str, region: Optional[str] = None):
        region = region or self.settings.default_region
        key = (service, region)
        if key not in self._clients:
            logger.debug(f"Building {service} client for {region}")
            self._clients[key] = self.session.client(service, region_name=region)
        return self._clients[key]

    @property
    def health(self):
        return self.client("health", self.settings.health_region)

    @property
    def s3(self):
        return self.client("s3", self.settings.default_region)

    @property
    def ses(self):
        return self.client("ses", self.config.ses_region)

    @property
    def cloudwatch(self):
        return self.client("cloudwatch", self.settings.default_region)

    @property
    def key_prefix(self) -> str:
        if self._key_prefix is None:
            self._key_prefix = self._resolve_account_name()
        return self._key_prefix

    def _resolve_account_name(self) -> str:
        # STS failures are fatal: without an account the stored keys are ambiguous.
        account_id = self.client("sts").get_caller_identity()["Account"]
        try:
            resp = self.client("organizations").describe_account(AccountId=account_id)
            return resp["Account"]["Name"]
        except (ClientError, BotoCoreError, KeyError) as e:
            logger.warning(f"Account name lookup failed for {account_id}, using the id: {e}")
            return account_id
