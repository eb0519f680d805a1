"""Subscription access checks derived from a user record."""

import time
from typing import Optional

from shared.constants import FREE_PLAN

# Cancelled subscriptions keep access until the period they paid for ends
_ACCESS_STATUSES = ("active", "trialing", "canceled")


def _period_end(user: dict) -> Optional[int]:
    value = user.get("current_period_end_ms")
    return int(value) if value else None


def _not_expired(period_end_ms: Optional[int], now_ms: int) -> bool:
    return not period_end_ms or period_end_ms > now_ms


def has_active_access(status: Optional[str], period_end_ms: Optional[int], now_ms: Optional[int] = None) -> bool:
    """True while a subscription, even a cancelled one, is inside its paid period."""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return status in _ACCESS_STATUSES and _not_expired(period_end_ms, now_ms)


def get_subscription_status_text(
    status: Optional[str],
    period_end_ms: Optional[int],
    auto_renew: Optional[bool],
    now_ms: Optional[int] = None,
) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    expired = bool(period_end_ms) and period_end_ms < now_ms

    if status == "active":
        if expired:
            return "Expired"
        if auto_renew is False:
            return "Cancels at period end"
        return "Active"
    if status == "trialing":
        return "Trial"
    if status == "canceled":
        return "Expired" if expired else "Cancelled (access until period end)"
    if status == "past_due":
        return "Payment failed"
    if status == "incomplete":
        return "Payment incomplete"
    return status or ""


def get_access_summary(user: Optional[dict], now_ms: Optional[int] = None) -> dict:
    """
    Summarize what a user's subscription currently grants.

    The free plan always has access and never expires, whatever period end
    is stored. Paid plans need an active or trialing status and an unexpired
    period.
    """
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

    if not user:
        return {"has_access": False, "plan_id": FREE_PLAN}

    plan_id = user.get("subscription_plan_id") or FREE_PLAN
    if plan_id == FREE_PLAN:
        return {
            "has_access": True,
            "has_active_access": True,
            "plan_id": FREE_PLAN,
            "status": user.get("subscription_status"),
            "expires_at_ms": None,
            "auto_renew": False,
            "status_text": "Active",
        }

    status = user.get("subscription_status")
    period_end = _period_end(user)
    auto_renew = user.get("auto_renew")

    return {
        "has_access": status in ("active", "trialing") and _not_expired(period_end, now_ms),
        "has_active_access": has_active_access(status, period_end, now_ms),
        "plan_id": plan_id,
        "status": status,
        "expires_at_ms": period_end,
        "auto_renew": bool(auto_renew),
        "status_text": get_subscription_status_text(status, period_end, auto_renew, now_ms),
    }
