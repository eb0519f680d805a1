"""
CloudWatch Metrics Helper

Provides utilities for emitting custom metrics to CloudWatch.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional

from shared.aws_clients import get_cloudwatch

logger = logging.getLogger(__name__)

NAMESPACE = os.environ.get("CLOUDWATCH_NAMESPACE", "SubSync")


def emit_metric(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> None:
    """
    Emit a custom metric to CloudWatch.

    Args:
        metric_name: Name of the metric
        value: Metric value (default: 1.0)
        unit: Unit of measurement (Count, Seconds, Bytes, etc.)
        dimensions: Optional dimensions for filtering metrics

    Example:
        emit_metric("WebhookEventsProcessed", dimensions={"EventType": "invoice.payment_failed"})
    """
    try:
        metric_data = {
            "MetricName": metric_name,
            "Value": value,
            "Unit": unit,
            "Timestamp": datetime.now(timezone.utc),
        }

        if dimensions:
            metric_data["Dimensions"] = [
                {"Name": k, "Value": v} for k, v in dimensions.items()
            ]

        get_cloudwatch().put_metric_data(
            Namespace=NAMESPACE,
            MetricData=[metric_data],
        )

        logger.debug(
            f"Emitted metric: {metric_name}={value} {unit}",
            extra={"dimensions": dimensions},
        )

    except Exception as e:
        # Don't fail the Lambda if metrics fail
        logger.warning(f"Failed to emit metric {metric_name}: {e}")


def emit_webhook_metric(event_type: str, error_kind: Optional[str] = None) -> None:
    """
    Emit the outcome of one webhook delivery.

    Args:
        event_type: Stripe event type (e.g. 'customer.subscription.updated')
        error_kind: BillingErrorKind value when reconciliation failed
    """
    if error_kind:
        emit_metric("WebhookFailures", dimensions={"EventType": event_type, "ErrorKind": error_kind})
    else:
        emit_metric("WebhookEventsProcessed", dimensions={"EventType": event_type})
