"""Shared billing utilities: customer linking, subscription state writes, Stripe access."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import stripe

from shared.errors import BillingErrorKind
from shared.logging_utils import log_external_call
from shared.record_store import LinkOutcome, RecordStore, UpsertOutcome

logger = logging.getLogger(__name__)

# One initial attempt plus one retry after linking
MAX_WRITE_ATTEMPTS = 2


@dataclass(frozen=True)
class SubscriptionUpdate:
    """Everything one reconciled event writes to a user record."""

    billing_customer_id: str
    subscription_plan_id: str
    billing_subscription_id: str
    subscription_status: str
    current_period_end_ms: int
    auto_renew: bool
    external_identity_id: Optional[str] = None
    event_created: Optional[int] = None


@dataclass(frozen=True)
class WriteResult:
    ok: bool
    user_id: Optional[str] = None
    error_kind: Optional[BillingErrorKind] = None
    stale: bool = False
    attempts: int = 0


class StripeProcessorClient:
    """Read-only access to Stripe, scoped to one API key."""

    def __init__(self, api_key: str):
        self._api_key = api_key

    def retrieve_subscription(self, subscription_id: str) -> dict:
        """Re-fetch the live subscription object as a plain dict.

        Raises stripe.StripeError on API failure.
        """
        start = time.time()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
        except stripe.StripeError as e:
            log_external_call(logger, "stripe", "subscriptions.retrieve", False, (time.time() - start) * 1000, str(e))
            raise
        log_external_call(logger, "stripe", "subscriptions.retrieve", True, (time.time() - start) * 1000)
        return subscription.to_dict()


def ensure_customer_linked(
    store: RecordStore,
    customer_id: str,
    external_identity_id: Optional[str],
) -> LinkOutcome:
    """Make sure the user behind external_identity_id carries customer_id.

    Linking is opportunistic: events without identity metadata skip it. A
    customer ID is never moved between users and a user's existing customer
    ID is never replaced.
    """
    if not external_identity_id or not customer_id:
        return LinkOutcome.SKIPPED

    user = store.get_user_by_external_identity_id(external_identity_id)
    if not user:
        logger.warning(f"No user found for identity {external_identity_id}, cannot link {customer_id}")
        return LinkOutcome.USER_NOT_FOUND

    existing = user.get("billing_customer_id")
    if existing == customer_id:
        return LinkOutcome.ALREADY_LINKED
    if existing:
        logger.warning(
            f"User {user['pk']} already linked to {existing}, not relinking to {customer_id}"
        )
        return LinkOutcome.CONFLICT

    holder = store.get_user_by_customer_id(customer_id)
    if holder and holder["pk"] != user["pk"]:
        logger.warning(f"Customer {customer_id} already belongs to user {holder['pk']}, not linking {user['pk']}")
        return LinkOutcome.CONFLICT

    outcome = store.link_customer_id(external_identity_id, customer_id)
    if outcome == LinkOutcome.LINKED:
        logger.info(f"Linked Stripe customer {customer_id} to user {user['pk']}")
    return outcome


def _resolve_user(store: RecordStore, update: SubscriptionUpdate) -> Optional[dict]:
    user = store.get_user_by_customer_id(update.billing_customer_id)
    if not user and update.external_identity_id:
        user = store.get_user_by_external_identity_id(update.external_identity_id)
    return user


def write_subscription_state(store: RecordStore, update: SubscriptionUpdate) -> WriteResult:
    """Apply a subscription tuple to the user it belongs to.

    Resolves the user by customer ID, then by identity ID. If neither
    resolves and an identity ID was supplied, links the customer and tries
    exactly once more. Store errors propagate unchanged.
    """
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        user = _resolve_user(store, update)

        if user:
            outcome = store.upsert_user_subscription(
                user["pk"],
                subscription_plan_id=update.subscription_plan_id,
                billing_subscription_id=update.billing_subscription_id,
                subscription_status=update.subscription_status,
                current_period_end_ms=update.current_period_end_ms,
                auto_renew=update.auto_renew,
                event_created=update.event_created,
            )
            if outcome == UpsertOutcome.WRITTEN:
                logger.info(
                    f"Subscription state written for {user['pk']}: plan={update.subscription_plan_id}, "
                    f"status={update.subscription_status}, period_end_ms={update.current_period_end_ms}, "
                    f"auto_renew={update.auto_renew}"
                )
                return WriteResult(ok=True, user_id=user["pk"], attempts=attempt)
            if outcome == UpsertOutcome.STALE:
                logger.warning(
                    f"Skipping stale event for {user['pk']} (event created {update.event_created})"
                )
                return WriteResult(ok=True, user_id=user["pk"], stale=True, attempts=attempt)
            # MISSING: record deleted between lookup and write, treat as not found

        if attempt == MAX_WRITE_ATTEMPTS or not update.external_identity_id:
            break

        logger.warning(
            f"User not found for customer {update.billing_customer_id}, "
            f"linking identity {update.external_identity_id} and retrying"
        )
        ensure_customer_linked(store, update.billing_customer_id, update.external_identity_id)

    logger.error(
        f"User not found for Stripe customer {update.billing_customer_id} "
        f"or identity {update.external_identity_id}"
    )
    return WriteResult(ok=False, error_kind=BillingErrorKind.USER_NOT_FOUND, attempts=attempt)
