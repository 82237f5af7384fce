"""
Run Metrics Module

Publishes per-round parity counters to CloudWatch so consecutive runs can
be charted side by side:
- success: 2xx responses per layer
- response_code: responses per layer and status code
- status_mismatch / content_mismatch / decode_error: discrepancies per pair

Every metric carries a RunId dimension (one uuid4 per invocation).
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3

from src.domain.summary import RunSummary


class RunMetricsPublisher:
    """
    Publishes run summary metrics to CloudWatch.

    Publishing failures are logged and swallowed; a metrics outage never
    fails a round.
    """

    NAMESPACE = "onion/parity"
    BATCH_SIZE = 20  # CloudWatch limit per put_metric_data request

    def __init__(
        self,
        run_id: Optional[str] = None,
        region_name: str = "us-east-1",
        namespace: Optional[str] = None,
        cloudwatch_client: Any = None,
    ):
        """
        Initialize metrics publisher.

        Args:
            run_id: Identifier grouping this invocation's metrics (uuid4 if omitted)
            region_name: AWS region for CloudWatch
            namespace: Metric namespace override
            cloudwatch_client: Pre-built CloudWatch client (useful for testing)
        """
        self.run_id = run_id or str(uuid.uuid4())
        self.region_name = region_name
        self.namespace = namespace or self.NAMESPACE
        self.cloudwatch_client = cloudwatch_client or boto3.client(
            "cloudwatch", region_name=region_name
        )
        self.logger = logging.getLogger(__name__)

    def build_metric_data(self, summary: RunSummary) -> List[Dict[str, Any]]:
        """
        Translate a RunSummary into CloudWatch metric datums.

        Args:
            summary: Round summary

        Returns:
            List of MetricData entries, unbatched
        """
        timestamp = datetime.now(timezone.utc)
        run_dimension = {"Name": "RunId", "Value": self.run_id}
        metric_data: List[Dict[str, Any]] = []

        for layer in summary.layers:
            layer_dimension = {"Name": "Layer", "Value": layer.value}
            metric_data.append(
                {
                    "MetricName": "success",
                    "Value": summary.success[layer],
                    "Unit": "Count",
                    "Timestamp": timestamp,
                    "Dimensions": [layer_dimension, run_dimension],
                }
            )
            for code, count in sorted(summary.status_codes[layer].items()):
                metric_data.append(
                    {
                        "MetricName": "response_code",
                        "Value": count,
                        "Unit": "Count",
                        "Timestamp": timestamp,
                        "Dimensions": [
                            layer_dimension,
                            {"Name": "Code", "Value": str(code)},
                            run_dimension,
                        ],
                    }
                )

        pair_counters = (
            ("status_mismatch", summary.status_mismatches),
            ("content_mismatch", summary.content_mismatches),
            ("decode_error", summary.decode_errors),
        )
        for metric_name, counts in pair_counters:
            for pair in summary.pairs:
                metric_data.append(
                    {
                        "MetricName": metric_name,
                        "Value": counts[pair],
                        "Unit": "Count",
                        "Timestamp": timestamp,
                        "Dimensions": [
                            {"Name": "Pair", "Value": pair.key},
                            run_dimension,
                        ],
                    }
                )

        return metric_data

    def publish_run_summary(self, run_number: int, summary: RunSummary) -> int:
        """
        Publish one round's summary metrics to CloudWatch.

        Args:
            run_number: Round number (log context only)
            summary: Round summary

        Returns:
            Number of datums published (0 when publishing failed)
        """
        try:
            metric_data = self.build_metric_data(summary)

            for i in range(0, len(metric_data), self.BATCH_SIZE):
                batch = metric_data[i : i + self.BATCH_SIZE]
                self.cloudwatch_client.put_metric_data(Namespace=self.namespace, MetricData=batch)
                self.logger.debug(f"Published {len(batch)} metrics to CloudWatch")

            self.logger.info(
                f"Run-{run_number} metrics published: run_id={self.run_id}, "
                f"datums={len(metric_data)}, paths={summary.total_paths}"
            )
            return len(metric_data)

        except Exception as e:
            self.logger.error(f"Failed to publish run {run_number} metrics: {e}")
            return 0
