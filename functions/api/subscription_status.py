"""
Subscription Status Endpoint - GET /subscription/status

Returns what the caller's current subscription grants.
"""

import logging
import time

from botocore.exceptions import ClientError

from shared.config import load_billing_config
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.record_store import RecordStore
from shared.request_utils import get_caller_identity
from shared.response_utils import error_response, get_origin, success_response
from shared.subscription_access import get_access_summary
from shared.types import APIGatewayEvent, LambdaResponse

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def handler(event: APIGatewayEvent, context) -> LambdaResponse:
    configure_structured_logging()
    set_request_id(event)
    start = time.time()
    origin = get_origin(event)
    caller = get_caller_identity(event)
    if not caller:
        log_api_request(logger, "GET", "/subscription/status", 401, (time.time() - start) * 1000)
        return error_response(401, "unauthorized", "Authentication required", origin=origin)

    try:
        store = RecordStore.from_config(load_billing_config(with_secrets=False))
        user = store.get_user_by_external_identity_id(caller)
    except ClientError as e:
        logger.error(f"Error reading subscription for {caller}: {e}")
        log_api_request(logger, "GET", "/subscription/status", 500, (time.time() - start) * 1000, caller)
        return error_response(500, "internal_error", "An error occurred processing your request", origin=origin)

    log_api_request(logger, "GET", "/subscription/status", 200, (time.time() - start) * 1000, caller)
    return success_response(
        get_access_summary(user),
        headers={"Cache-Control": "no-store"},
        origin=origin,
    )
