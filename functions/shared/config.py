"""
Deployment-time configuration for the billing Lambdas.

Everything here is read once per cold start (secrets are re-read after
STRIPE_SECRETS_CACHE_TTL) and frozen; nothing mutates it at runtime.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field

from botocore.exceptions import ClientError

from shared.aws_clients import get_secretsmanager
from shared.constants import DEFAULT_SIGNATURE_TOLERANCE, PLAN_MONTHLY_PRICES

logger = logging.getLogger(__name__)

# Cached Stripe secrets with TTL
_stripe_secrets_cache: tuple[str | None, str | None] = (None, None)
_stripe_secrets_cache_time = 0.0
STRIPE_SECRETS_CACHE_TTL = 300  # 5 minutes


@dataclass(frozen=True)
class BillingConfig:
    """Static configuration shared by the webhook and admin handlers."""

    stripe_api_key: str | None
    webhook_secret: str | None
    price_to_plan: dict[str, str]
    plan_monthly_prices: dict[str, int] = field(default_factory=lambda: dict(PLAN_MONTHLY_PRICES))
    signature_tolerance: int = DEFAULT_SIGNATURE_TOLERANCE
    enforce_event_ordering: bool = False
    users_table: str = "subsync-users"
    refunds_table: str = "subsync-refunds"
    admins_table: str = "subsync-admins"
    billing_events_table: str = "subsync-billing-events"


def build_price_to_plan() -> dict[str, str]:
    """Map Stripe price IDs to internal plan IDs from the environment.

    Use `or` to handle empty string env vars (deploy tooling sets "" when a
    price is not configured) so "" never becomes a valid price ID.
    """
    return {
        (os.environ.get("STRIPE_PRICE_PRO_MONTHLY") or "price_pro_monthly"): "pro",
        (os.environ.get("STRIPE_PRICE_PRO_ANNUAL") or "price_pro_annual"): "pro",
        (os.environ.get("STRIPE_PRICE_ENTERPRISE_MONTHLY") or "price_enterprise_monthly"): "enterprise",
        (os.environ.get("STRIPE_PRICE_ENTERPRISE_ANNUAL") or "price_enterprise_annual"): "enterprise",
    }


def _read_secret(secret_arn: str | None, json_field: str) -> str | None:
    """Read a secret that is either raw text or a JSON object with json_field."""
    if not secret_arn:
        return None
    try:
        response = get_secretsmanager().get_secret_value(SecretId=secret_arn)
    except ClientError as e:
        logger.error(f"Failed to retrieve secret {json_field}: {e}")
        return None

    secret_value = response.get("SecretString", "")
    try:
        secret_json = json.loads(secret_value)
    except json.JSONDecodeError:
        return secret_value
    if isinstance(secret_json, dict):
        return secret_json.get(json_field) or secret_value
    return secret_value


def get_stripe_secrets() -> tuple[str | None, str | None]:
    """Retrieve Stripe API key and webhook secret from Secrets Manager (cached with TTL)."""
    global _stripe_secrets_cache, _stripe_secrets_cache_time

    if _stripe_secrets_cache[0] and (time.time() - _stripe_secrets_cache_time) < STRIPE_SECRETS_CACHE_TTL:
        return _stripe_secrets_cache

    api_key = _read_secret(os.environ.get("STRIPE_SECRET_ARN"), "key")
    webhook_secret = _read_secret(os.environ.get("STRIPE_WEBHOOK_SECRET_ARN"), "secret")

    _stripe_secrets_cache = (api_key, webhook_secret)
    _stripe_secrets_cache_time = time.time()
    return api_key, webhook_secret


def reset_secrets_cache() -> None:
    """Forget cached secrets. Used in tests for clean state."""
    global _stripe_secrets_cache, _stripe_secrets_cache_time
    _stripe_secrets_cache = (None, None)
    _stripe_secrets_cache_time = 0.0


def load_billing_config(with_secrets: bool = True) -> BillingConfig:
    """Build the BillingConfig for this invocation from env vars and Secrets Manager."""
    api_key, webhook_secret = get_stripe_secrets() if with_secrets else (None, None)

    try:
        tolerance = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS") or DEFAULT_SIGNATURE_TOLERANCE)
    except ValueError:
        logger.warning("Invalid STRIPE_WEBHOOK_TOLERANCE_SECONDS, using default")
        tolerance = DEFAULT_SIGNATURE_TOLERANCE

    return BillingConfig(
        stripe_api_key=api_key,
        webhook_secret=webhook_secret,
        price_to_plan=build_price_to_plan(),
        signature_tolerance=tolerance,
        enforce_event_ordering=os.environ.get("ENFORCE_EVENT_ORDERING", "false").lower() == "true",
        users_table=os.environ.get("USERS_TABLE", "subsync-users"),
        refunds_table=os.environ.get("REFUNDS_TABLE", "subsync-refunds"),
        admins_table=os.environ.get("ADMINS_TABLE", "subsync-admins"),
        billing_events_table=os.environ.get("BILLING_EVENTS_TABLE", "subsync-billing-events"),
    )
