"""
Normalize billing period fields across Stripe API versions.

Older API versions put current_period_end on the subscription itself; newer
ones (2025-03-31 onward) only carry it on each subscription item. Lookup order
is fixed: top level first, then the first item. No other location is consulted.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional


@dataclass(frozen=True)
class BillingPeriod:
    current_period_end_ms: int
    auto_renew: bool


def _as_seconds(value: Any) -> Optional[int]:
    # bool is an int subclass but never a timestamp
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return int(value)
    return None


def normalize_period(subscription: dict) -> Optional[BillingPeriod]:
    """Extract period end (ms) and auto-renew from a subscription object.

    Returns None if no period end is found in any known location.
    """
    seconds = _as_seconds(subscription.get("current_period_end"))

    if seconds is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            seconds = _as_seconds(items[0].get("current_period_end"))

    if seconds is None:
        return None

    auto_renew = not bool(subscription.get("cancel_at_period_end", False))
    return BillingPeriod(current_period_end_ms=seconds * 1000, auto_renew=auto_renew)
