"""Shared request utilities for API handlers."""

import base64
import json
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def get_caller_identity(event: dict) -> Optional[str]:
    """Return the identity provider's user id for the authenticated caller.

    SECURITY: The id comes from the API Gateway authorizer context, which is
    populated after the identity provider's token has been verified. It is
    treated as an opaque string and never read from headers or the body.
    """
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}

    # JWT authorizer (HTTP API) nests claims under "jwt"
    claims = authorizer.get("claims") or (authorizer.get("jwt") or {}).get("claims") or {}
    identity = claims.get("sub") or authorizer.get("principalId")
    if identity:
        return str(identity)

    logger.warning("Missing caller identity in authorizer context")
    return None


def get_raw_body(event: dict) -> bytes:
    """Return the exact request body bytes, undoing API Gateway base64 encoding."""
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body)
    if isinstance(body, bytes):
        return body
    return body.encode("utf-8")


def parse_json_body(event: dict) -> dict:
    """Parse a JSON object body. Raises ValueError on anything else."""
    raw = get_raw_body(event)
    if not raw:
        return {}
    body = json.loads(raw)
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body
