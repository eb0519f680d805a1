"""Resolve Stripe prices to internal subscription plan IDs."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


def extract_price_id(subscription: dict) -> Optional[str]:
    """Price ID of the first subscription item, if any."""
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    if isinstance(price, str):
        return price
    return price.get("id")


def resolve_plan_id(
    price_id: Optional[str],
    metadata: Optional[dict],
    price_to_plan: dict[str, str],
) -> Optional[str]:
    """Map a price ID to a plan ID, falling back to metadata["planId"].

    Returns None when neither source names a plan. Callers must abort the
    event rather than guess.
    """
    if price_id:
        plan_id = price_to_plan.get(price_id)
        if plan_id:
            return plan_id

    fallback = (metadata or {}).get("planId")
    if isinstance(fallback, str) and fallback.strip():
        logger.info(f"Price {price_id} not mapped, using metadata planId={fallback}")
        return fallback.strip()

    return None
