import logging
from typing import Dict, List

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# PutMetricData accepts at most 20 MetricDatum per call on older endpoints.
METRIC_BATCH_SIZE = 20


class MetricsBuffer:
    """Per-run accumulator of CloudWatch data points."""

    def __init__(self, namespace: str):
        self.namespace = namespace
        self._data: List[Dict] = []

    def __len__(self):
        return len(self._data)

    def add(self, metric_name: str, value: float, dimension_name: str = "", dimension_value: str = ""):
        datum = {"MetricName": metric_name, "Value": float(value), "Unit": "None"}
        if dimension_name:
            datum["Dimensions"] = [{"Name": dimension_name, "Value": dimension_value}]
        self._data.append(datum)

    def flush(self, cloudwatch) -> int:
        """Send and clear the buffer. Returns the number of data points sent."""
        sent = 0
        for i in range(0, len(self._data), METRIC_BATCH_SIZE):
            batch = self._data[i:i + METRIC_BATCH_SIZE]
            try:
                cloudwatch.put_metric_data(Namespace=self.namespace, MetricData=batch)
                sent += len(batch)
            except (ClientError, BotoCoreError) as e:
                logger.error(f"METRIC_ERROR: {e}")
        self._data.clear()
        return sent
