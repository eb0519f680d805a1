"""
Admin Subscriptions Endpoints

GET /admin/subscriptions            - paying users with analytics (handler)
GET /admin/subscriptions/analytics  - analytics over all paying users (analytics_handler)

Requires an admin record for the caller's identity (any access level).
"""

import logging
import time

from botocore.exceptions import ClientError

from shared.analytics import build_subscription_report, calculate_analytics, is_paying_user
from shared.admin_access import require_admin
from shared.config import load_billing_config
from shared.constants import SORT_FIELDS, SORT_ORDERS
from shared.errors import APIError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.record_store import RecordStore
from shared.request_utils import get_caller_identity
from shared.response_utils import error_response, get_origin, success_response

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def _query_params(event: dict) -> dict:
    return event.get("queryStringParameters") or {}


def handler(event, context):
    """
    Lambda handler for GET /admin/subscriptions.

    Query params:
        plan: plan id to filter by, or "all" (default)
        sortBy: name, email, subscription, date or amount (default name)
        sortOrder: asc or desc (default asc)
    """
    configure_structured_logging()
    set_request_id(event)
    start = time.time()
    origin = get_origin(event)
    caller = get_caller_identity(event)

    params = _query_params(event)
    filter_by_plan = params.get("plan") or "all"
    sort_by = params.get("sortBy") or "name"
    sort_order = params.get("sortOrder") or "asc"

    if sort_by not in SORT_FIELDS:
        logger.info(f"Unknown sortBy '{sort_by}', sorting by name")
        sort_by = "name"
    if sort_order not in SORT_ORDERS:
        return error_response(400, "invalid_request", "sortOrder must be 'asc' or 'desc'", origin=origin)

    try:
        config = load_billing_config(with_secrets=False)
        store = RecordStore.from_config(config)
        require_admin(store, caller)

        report = build_subscription_report(
            store.list_non_free_users(),
            store.list_refunds(),
            plan_prices=config.plan_monthly_prices,
            filter_by_plan=filter_by_plan,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except APIError as e:
        log_api_request(logger, "GET", "/admin/subscriptions", e.status_code, (time.time() - start) * 1000, caller)
        return error_response(e.status_code, e.code, e.message, details=e.details, origin=origin)
    except ClientError as e:
        logger.error(f"Error fetching subscriptions for admin: {e}")
        return error_response(
            500, "internal_error", "Failed to retrieve subscription data. Please try again.", origin=origin
        )

    log_api_request(logger, "GET", "/admin/subscriptions", 200, (time.time() - start) * 1000, caller)
    return success_response(report, origin=origin)


def analytics_handler(event, context):
    """Lambda handler for GET /admin/subscriptions/analytics."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()
    origin = get_origin(event)
    caller = get_caller_identity(event)

    try:
        config = load_billing_config(with_secrets=False)
        store = RecordStore.from_config(config)
        require_admin(store, caller)

        paying_users = [user for user in store.list_non_free_users() if is_paying_user(user)]
        analytics = calculate_analytics(paying_users, store.list_refunds(), config.plan_monthly_prices)
    except APIError as e:
        log_api_request(
            logger, "GET", "/admin/subscriptions/analytics", e.status_code, (time.time() - start) * 1000, caller
        )
        return error_response(e.status_code, e.code, e.message, details=e.details, origin=origin)
    except ClientError as e:
        logger.error(f"Error fetching subscription analytics: {e}")
        return error_response(
            500, "internal_error", "Failed to retrieve analytics data. Please try again.", origin=origin
        )

    log_api_request(logger, "GET", "/admin/subscriptions/analytics", 200, (time.time() - start) * 1000, caller)
    return success_response(analytics, origin=origin)
