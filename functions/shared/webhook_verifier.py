"""
Stripe webhook signature verification.

The raw body is checked against the Stripe-Signature header before a single
byte of it is interpreted; only a verified payload is parsed into an event.
"""

import json
import logging
from typing import Optional

import stripe

from shared.constants import DEFAULT_SIGNATURE_TOLERANCE
from shared.errors import InvalidPayloadError, InvalidSignatureError

logger = logging.getLogger(__name__)


def get_signature_header(headers: Optional[dict]) -> Optional[str]:
    """Read the Stripe-Signature header regardless of API Gateway casing."""
    headers = headers or {}
    return headers.get("stripe-signature") or headers.get("Stripe-Signature")


def verify_and_parse(
    payload: bytes | str,
    sig_header: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_SIGNATURE_TOLERANCE,
) -> dict:
    """Verify a webhook delivery and return the parsed event.

    Args:
        payload: Exact request body as received
        sig_header: Stripe-Signature header value ("t=...,v1=...")
        secret: Endpoint signing secret (whsec_...)
        tolerance: Maximum age of the signed timestamp in seconds

    Returns:
        Event dict with at least "id", "type" and "data.object"

    Raises:
        InvalidSignatureError: header missing, malformed, stale or not matching
        InvalidPayloadError: verified body is not a Stripe event
    """
    if not sig_header:
        raise InvalidSignatureError("Missing Stripe signature")

    # Stripe signs the UTF-8 text of the body
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidPayloadError() from e

    try:
        stripe.WebhookSignature.verify_header(payload, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid Stripe signature: {e}")
        raise InvalidSignatureError() from e

    try:
        event = json.loads(payload)
    except json.JSONDecodeError as e:
        raise InvalidPayloadError() from e

    if not isinstance(event, dict) or not event.get("type") or not isinstance(event.get("data"), dict):
        raise InvalidPayloadError("Webhook payload is not a Stripe event")

    return event
