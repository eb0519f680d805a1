"""
Stripe Webhook Endpoint - POST /webhooks/stripe

Reconciles Stripe subscription events into user records.
Uses Stripe signature verification instead of API key auth.

Any failure while reconciling an event returns a non-2xx status so Stripe
redelivers it; writes are idempotent upserts, so a redelivered event that
already succeeded converges to the same record.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

import stripe
from botocore.exceptions import ClientError

from shared.billing_utils import (
    StripeProcessorClient,
    SubscriptionUpdate,
    ensure_customer_linked,
    write_subscription_state,
)
from shared.config import BillingConfig, load_billing_config
from shared.constants import FREE_PLAN
from shared.errors import APIError, BillingErrorKind
from shared.logging_utils import bind_billing_event, configure_structured_logging, set_request_id
from shared.metrics import emit_webhook_metric
from shared.period_normalizer import BillingPeriod, normalize_period
from shared.plan_resolver import extract_price_id, resolve_plan_id
from shared.record_store import RecordStore
from shared.request_utils import get_raw_body
from shared.response_utils import error_response
from shared.webhook_verifier import get_signature_header, verify_and_parse

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Metadata keys that carry the identity provider's user id
IDENTITY_METADATA_KEYS = ("clerkId", "externalIdentityId")


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of reconciling one event, ready to become an HTTP response."""

    status_code: int
    processed: bool
    error_kind: Optional[BillingErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status_code == 200


def _processed(message: str = "") -> DispatchResult:
    return DispatchResult(status_code=200, processed=True, message=message)


def _ignored(message: str) -> DispatchResult:
    return DispatchResult(status_code=200, processed=False, message=message)


def _failed(kind: BillingErrorKind, message: str) -> DispatchResult:
    return DispatchResult(status_code=500, processed=False, error_kind=kind, message=message)


def _extract_id(value) -> Optional[str]:
    """Stripe fields may hold an ID string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def _extract_identity(metadata: Optional[dict]) -> Optional[str]:
    metadata = metadata or {}
    for key in IDENTITY_METADATA_KEYS:
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Subscription ID of an invoice across Stripe API versions."""
    subscription_id = _extract_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    # 2025-03-31 onward: invoice.parent.subscription_details.subscription
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _extract_id(details.get("subscription"))


class WebhookDispatcher:
    """Routes verified Stripe events to the reconciliation steps.

    Holds only its collaborators; every dispatch call is independent.
    """

    def __init__(self, store: RecordStore, processor: StripeProcessorClient, config: BillingConfig):
        self._store = store
        self._processor = processor
        self._config = config
        self._handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_created,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    def dispatch(self, event: dict) -> DispatchResult:
        event_id = event.get("id") or "unknown"
        event_type = event.get("type") or "unknown"
        bind_billing_event(event_id, event_type)
        logger.info(f"Processing Stripe event: {event_type} (id={event_id})")

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled event type: {event_type}")
            result = _ignored(f"Unhandled event type: {event_type}")
            self._finish(event, result)
            return result

        data = (event.get("data") or {}).get("object")
        try:
            if not isinstance(data, dict):
                result = _failed(BillingErrorKind.INVALID_EVENT_DATA, "Event has no data object")
            else:
                result = handler(data, event)
        except ClientError as e:
            # DynamoDB errors are transient - Stripe retry can re-process
            logger.error(f"Record store error handling {event_type} (id={event_id}): {e}")
            result = _failed(BillingErrorKind.DOWNSTREAM_WRITE_FAILURE, "Temporary error, please retry")
        except stripe.StripeError as e:
            logger.error(f"Stripe error handling {event_type} (id={event_id}): {e}")
            result = _failed(BillingErrorKind.PROCESSOR_ERROR, "Stripe error, please retry")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Don't leak internal field names in response
            logger.error(f"Malformed event data in {event_type} (id={event_id}): {e}")
            result = _failed(BillingErrorKind.INVALID_EVENT_DATA, "Invalid event data")

        self._finish(event, result)
        return result

    def _finish(self, event: dict, result: DispatchResult) -> None:
        event_type = event.get("type") or "unknown"
        if result.ok:
            emit_webhook_metric(event_type)
            self._store.record_billing_event(event, "success" if result.processed else "ignored")
            return

        logger.error(
            f"Failed to reconcile {event_type} (id={event.get('id')}): {result.message}",
            extra={"error_kind": result.error_kind.value},
        )
        emit_webhook_metric(event_type, result.error_kind.value)
        self._store.record_billing_event(event, "failed", result.error_kind.value, result.message)

    # ===========================================
    # Resolution helpers
    # ===========================================

    def _resolve(self, subscription: dict) -> Union[DispatchResult, tuple[str, BillingPeriod]]:
        """Plan and period for a subscription, or the failure that aborts the event."""
        price_id = extract_price_id(subscription)
        plan_id = resolve_plan_id(price_id, subscription.get("metadata"), self._config.price_to_plan)
        if not plan_id:
            return _failed(
                BillingErrorKind.UNRESOLVED_PLAN,
                f"Could not determine plan for price {price_id} from price or metadata",
            )

        period = normalize_period(subscription)
        if period is None:
            return _failed(
                BillingErrorKind.UNRESOLVED_PERIOD,
                f"Missing current_period_end on subscription {subscription.get('id')}",
            )
        return plan_id, period

    def _event_created(self, event: dict) -> Optional[int]:
        if not self._config.enforce_event_ordering:
            return None
        created = event.get("created")
        return created if isinstance(created, int) and not isinstance(created, bool) else None

    def _write(self, update: SubscriptionUpdate) -> DispatchResult:
        result = write_subscription_state(self._store, update)
        if not result.ok:
            return _failed(
                result.error_kind,
                f"No user for customer {update.billing_customer_id}",
            )
        if result.stale:
            return _ignored("Stale event, newer state already applied")
        return _processed()

    def _reconcile_subscription(
        self,
        subscription: dict,
        customer_id: str,
        subscription_id: str,
        status: str,
        event: dict,
    ) -> DispatchResult:
        resolution = self._resolve(subscription)
        if isinstance(resolution, DispatchResult):
            return resolution
        plan_id, period = resolution

        external_identity_id = _extract_identity(subscription.get("metadata"))
        ensure_customer_linked(self._store, customer_id, external_identity_id)

        logger.info(
            f"Subscription {subscription_id}: plan={plan_id}, status={status}, "
            f"period_end_ms={period.current_period_end_ms}, auto_renew={period.auto_renew}"
        )
        return self._write(
            SubscriptionUpdate(
                billing_customer_id=customer_id,
                external_identity_id=external_identity_id,
                subscription_plan_id=plan_id,
                billing_subscription_id=subscription_id,
                subscription_status=status,
                current_period_end_ms=period.current_period_end_ms,
                auto_renew=period.auto_renew,
                event_created=self._event_created(event),
            )
        )

    # ===========================================
    # Event handlers
    # ===========================================

    def _handle_checkout_completed(self, session: dict, event: dict) -> DispatchResult:
        """Link the Stripe customer to the user; subscription.created carries the plan."""
        customer_id = _extract_id(session.get("customer"))
        if not customer_id:
            logger.warning(f"Checkout session {session.get('id')} has no customer")
            return _ignored("Checkout session has no customer")

        outcome = ensure_customer_linked(self._store, customer_id, _extract_identity(session.get("metadata")))
        logger.info(f"Checkout completed for customer {customer_id}: link {outcome.value}")
        return _processed()

    def _handle_subscription_created(self, subscription: dict, event: dict) -> DispatchResult:
        customer_id = _extract_id(subscription.get("customer"))
        if not customer_id:
            return _failed(BillingErrorKind.INVALID_EVENT_DATA, "Missing customer ID in subscription")

        return self._reconcile_subscription(
            subscription,
            customer_id,
            subscription.get("id") or "",
            subscription.get("status") or "incomplete",
            event,
        )

    def _handle_subscription_updated(self, subscription: dict, event: dict) -> DispatchResult:
        """Same as created, but a pending cancellation is stored as canceled."""
        customer_id = _extract_id(subscription.get("customer"))
        if not customer_id:
            return _failed(BillingErrorKind.INVALID_EVENT_DATA, "Missing customer ID in subscription")

        status = subscription.get("status") or "incomplete"
        if subscription.get("cancel_at_period_end"):
            status = "canceled"

        return self._reconcile_subscription(
            subscription,
            customer_id,
            subscription.get("id") or "",
            status,
            event,
        )

    def _handle_subscription_deleted(self, subscription: dict, event: dict) -> DispatchResult:
        """Downgrade to free without consulting plan or period."""
        customer_id = _extract_id(subscription.get("customer"))
        if not customer_id:
            return _failed(BillingErrorKind.INVALID_EVENT_DATA, "Missing customer ID in subscription")

        logger.info(f"Subscription {subscription.get('id')} deleted, downgrading {customer_id} to free")
        return self._write(
            SubscriptionUpdate(
                billing_customer_id=customer_id,
                subscription_plan_id=FREE_PLAN,
                billing_subscription_id="",
                subscription_status="canceled",
                current_period_end_ms=0,
                auto_renew=False,
                event_created=self._event_created(event),
            )
        )

    def _handle_invoice(self, invoice: dict, event: dict, status: str) -> DispatchResult:
        customer_id = _extract_id(invoice.get("customer"))
        if not customer_id:
            return _failed(BillingErrorKind.INVALID_EVENT_DATA, "Missing customer ID in invoice")

        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info(f"Invoice {invoice.get('id')} is not for a subscription")
            return _ignored("Invoice is not for a subscription")

        # Invoice events lack price and period detail, use the live subscription
        subscription = self._processor.retrieve_subscription(subscription_id)
        return self._reconcile_subscription(subscription, customer_id, subscription_id, status, event)

    def _handle_payment_succeeded(self, invoice: dict, event: dict) -> DispatchResult:
        return self._handle_invoice(invoice, event, "active")

    def _handle_payment_failed(self, invoice: dict, event: dict) -> DispatchResult:
        logger.warning(f"Payment failed for customer {_extract_id(invoice.get('customer'))}")
        return self._handle_invoice(invoice, event, "past_due")


def handler(event, context):
    """
    Lambda handler for Stripe webhooks.

    Handles:
    - checkout.session.completed: Link Stripe customer to user
    - customer.subscription.created/updated: Plan, status and period changes
    - customer.subscription.deleted: Downgrade to free
    - invoice.payment_succeeded: Mark active with renewed period
    - invoice.payment_failed: Mark past_due
    """
    configure_structured_logging()
    set_request_id(event)

    config = load_billing_config()
    if not config.stripe_api_key or not config.webhook_secret:
        logger.error("Stripe secrets not configured")
        return error_response(500, "stripe_not_configured", "Stripe not configured")

    try:
        stripe_event = verify_and_parse(
            get_raw_body(event),
            get_signature_header(event.get("headers")),
            config.webhook_secret,
            config.signature_tolerance,
        )
    except APIError as e:
        emit_webhook_metric("unverified", e.code)
        return e.to_response()
    except ValueError:
        # base64 body that does not decode
        emit_webhook_metric("unverified", BillingErrorKind.INVALID_PAYLOAD.value)
        return error_response(400, BillingErrorKind.INVALID_PAYLOAD.value, "Invalid webhook payload")

    store = RecordStore.from_config(config)
    dispatcher = WebhookDispatcher(store, StripeProcessorClient(config.stripe_api_key), config)

    try:
        result = dispatcher.dispatch(stripe_event)
    except Exception as e:
        logger.error(f"Unexpected error handling {stripe_event.get('type')}: {e}", exc_info=True)
        emit_webhook_metric(stripe_event.get("type") or "unknown", "unexpected")
        store.record_billing_event(stripe_event, "failed", "unexpected", str(e))
        return error_response(500, "processing_failed", "Processing failed")

    if not result.ok:
        return error_response(result.status_code, result.error_kind.value, result.message)

    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps({"received": True, "processed": result.processed}),
    }
