"""
Admin Administrators Endpoint

GET    /admin/administrators       - list admins
POST   /admin/administrators       - create an admin
PATCH  /admin/administrators/{id}  - change an admin's access level
DELETE /admin/administrators/{id}  - remove an admin

Any admin may list; only Full admins may change admins. See
shared.admin_access for the rules.
"""

import logging
import time

from botocore.exceptions import ClientError

from shared import admin_access
from shared.config import load_billing_config
from shared.errors import APIError, InvalidRequestError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.record_store import RecordStore
from shared.request_utils import get_caller_identity, parse_json_body
from shared.response_utils import error_response, get_origin, success_response

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def _target_id(event: dict) -> str:
    target = (event.get("pathParameters") or {}).get("id")
    if not target:
        raise InvalidRequestError("Missing admin id in path")
    return target


def _body(event: dict) -> dict:
    try:
        return parse_json_body(event)
    except ValueError as e:
        raise InvalidRequestError("Invalid JSON body") from e


def handler(event, context):
    """Lambda handler for the /admin/administrators routes."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()
    origin = get_origin(event)
    caller = get_caller_identity(event)
    method = (event.get("httpMethod") or "").upper()
    path = event.get("path") or "/admin/administrators"

    try:
        store = RecordStore.from_config(load_billing_config(with_secrets=False))

        if method == "GET":
            status_code, data = 200, {"admins": admin_access.list_admins(store, caller)}

        elif method == "POST":
            body = _body(event)
            record = admin_access.create_admin(
                store,
                caller,
                body.get("externalIdentityId"),
                body.get("accessLevel"),
                email=body.get("email") or "",
                name=body.get("name") or "",
            )
            status_code, data = 201, {"admin": record}

        elif method == "PATCH":
            body = _body(event)
            target = _target_id(event)
            level = admin_access.update_admin_access_level(store, caller, target, body.get("accessLevel"))
            status_code, data = 200, {"externalIdentityId": target, "accessLevel": level}

        elif method == "DELETE":
            target = _target_id(event)
            admin_access.delete_admin(store, caller, target)
            status_code, data = 200, {"deleted": True, "externalIdentityId": target}

        else:
            return error_response(405, "method_not_allowed", f"Method {method} not allowed", origin=origin)

    except APIError as e:
        log_api_request(logger, method, path, e.status_code, (time.time() - start) * 1000, caller)
        return error_response(e.status_code, e.code, e.message, details=e.details, origin=origin)
    except ClientError as e:
        logger.error(f"Error handling {method} {path}: {e}")
        return error_response(500, "internal_error", "An error occurred processing your request", origin=origin)

    log_api_request(logger, method, path, status_code, (time.time() - start) * 1000, caller)
    return success_response(data, status_code=status_code, origin=origin)
