"""
Subscription analytics for the admin dashboard.

Pure functions over user and refund records; callers fetch the records
(RecordStore.list_non_free_users / list_refunds) and pass them in.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from shared.constants import FREE_PLAN, PLAN_DISPLAY_NAMES, PLAN_MONTHLY_PRICES, REVENUE_STATUSES


def _as_number(value: Any) -> int | float:
    """DynamoDB numbers arrive as Decimal; keep integers integral."""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    return value


def is_paying_user(user: dict) -> bool:
    plan_id = user.get("subscription_plan_id")
    return bool(plan_id) and plan_id != FREE_PLAN


def get_monthly_amount(plan_id: Optional[str], plan_prices: Optional[dict] = None) -> int:
    prices = PLAN_MONTHLY_PRICES if plan_prices is None else plan_prices
    return prices.get(plan_id or "", 0)


def get_plan_display_name(plan_id: Optional[str]) -> str:
    return PLAN_DISPLAY_NAMES.get(plan_id or "", plan_id or "")


def calculate_analytics(
    paying_users: list[dict],
    refunds: Iterable[dict],
    plan_prices: Optional[dict] = None,
) -> dict:
    """Headline revenue numbers for a set of paying users.

    MRR only counts active and trialing subscriptions; past_due and canceled
    users still count as paying users. Refunds are summed over the whole
    ledger regardless of the user set.
    """
    total_mrr = sum(
        get_monthly_amount(user.get("subscription_plan_id"), plan_prices)
        for user in paying_users
        if user.get("subscription_status") in REVENUE_STATUSES
    )
    total_refunds = sum((Decimal(str(refund.get("amount", 0))) for refund in refunds), Decimal(0))

    return {
        "totalPayingUsers": len(paying_users),
        "totalMRR": total_mrr,
        "totalRefunds": _as_number(total_refunds),
        # Approximation: annual-plan revenue is not modelled separately
        "expectedARR": total_mrr * 12,
    }


def get_initials(name: Optional[str], email: Optional[str]) -> str:
    if name:
        return "".join(part[0] for part in name.split(" ") if part).upper()[:2]
    return (email or "")[:2].upper()


def format_period_end(period_end_ms: Optional[int]) -> str:
    """Render a period end like "Jan 1, 2025" (UTC), or "N/A" when unset."""
    if not period_end_ms:
        return "N/A"
    dt = datetime.fromtimestamp(int(period_end_ms) / 1000, tz=timezone.utc)
    return f"{dt:%b} {dt.day}, {dt.year}"


def format_subscription_row(
    user: dict,
    refunded_subscription_ids: set[str],
    plan_prices: Optional[dict] = None,
) -> dict:
    """One dashboard row for a paying user."""
    plan_id = user.get("subscription_plan_id")
    monthly_amount = get_monthly_amount(plan_id, plan_prices)
    period_end = _as_number(user.get("current_period_end_ms"))
    subscription_id = user.get("billing_subscription_id") or ""
    auto_renew = bool(user.get("auto_renew", False))

    return {
        "id": user.get("pk"),
        "externalIdentityId": user.get("external_identity_id"),
        "fullName": user.get("name") or "Unknown",
        "email": user.get("email") or "",
        "initials": get_initials(user.get("name"), user.get("email")),
        "subscriptionPlan": {
            "name": plan_id,
            "displayName": get_plan_display_name(plan_id),
        },
        "subscriptionStatus": user.get("subscription_status"),
        "currentPeriodEnd": period_end,
        "currentPeriodEndFormatted": format_period_end(period_end),
        "autoRenew": auto_renew,
        "paymentAmount": monthly_amount,
        "billingFrequency": "monthly",
        "paymentAmountFormatted": f"${monthly_amount}/mo",
        "billingSubscriptionId": subscription_id,
        "billingCustomerId": user.get("billing_customer_id"),
        "isCancelledWithRefund": (
            not auto_renew and bool(subscription_id) and subscription_id in refunded_subscription_ids
        ),
    }


_SORT_KEYS = {
    "name": lambda row: row["fullName"].lower(),
    "email": lambda row: row["email"].lower(),
    "subscription": lambda row: row["subscriptionPlan"]["displayName"].lower(),
    "date": lambda row: row["currentPeriodEnd"] or 0,
    "amount": lambda row: row["paymentAmount"],
}


def sort_subscription_rows(rows: list[dict], sort_by: str = "name", sort_order: str = "asc") -> list[dict]:
    """Sort rows by a dashboard column. Unknown columns sort by name.

    sorted() is stable in both directions, so ties keep store order.
    """
    key = _SORT_KEYS.get(sort_by, _SORT_KEYS["name"])
    return sorted(rows, key=key, reverse=(sort_order == "desc"))


def build_subscription_report(
    users: Iterable[dict],
    refunds: Iterable[dict],
    plan_prices: Optional[dict] = None,
    filter_by_plan: Optional[str] = "all",
    sort_by: str = "name",
    sort_order: str = "asc",
) -> dict:
    """
    Build the admin subscription list with its analytics.

    Args:
        users: User records (free users are dropped here)
        refunds: Full refund ledger
        plan_prices: Monthly price per plan id, defaults to the catalogue
        filter_by_plan: Plan id to keep, or "all"
        sort_by: name, email, subscription, date or amount
        sort_order: asc or desc

    Returns:
        {"analytics": {...}, "subscriptions": [rows]}
    """
    refunds = list(refunds)
    paying_users = [user for user in users if is_paying_user(user)]

    if filter_by_plan and filter_by_plan != "all":
        paying_users = [user for user in paying_users if user.get("subscription_plan_id") == filter_by_plan]

    refunded = {refund.get("billing_subscription_id") for refund in refunds if refund.get("billing_subscription_id")}
    rows = [format_subscription_row(user, refunded, plan_prices) for user in paying_users]

    return {
        "analytics": calculate_analytics(paying_users, refunds, plan_prices),
        "subscriptions": sort_subscription_rows(rows, sort_by or "name", sort_order or "asc"),
    }
