"""
DynamoDB record store for users, refunds, admins and the billing audit trail.

The store is an explicitly constructed object so handlers can hand the same
instance to every pipeline step and tests can point it at moto tables. Each
method is one atomic DynamoDB call (plus pagination for scans); ClientErrors
other than expected condition failures propagate to the caller.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from shared.aws_clients import get_dynamodb
from shared.config import BillingConfig
from shared.constants import ACCESS_FULL, ADMIN_SK, BILLING_EVENT_TTL_DAYS, FREE_PLAN, USER_PROFILE_SK
from shared.types import AdminRecord, RefundRecord, UserRecord

logger = logging.getLogger(__name__)


class LinkOutcome(str, Enum):
    """Result of attaching a Stripe customer ID to a user."""

    LINKED = "linked"
    ALREADY_LINKED = "already_linked"
    CONFLICT = "conflict"
    USER_NOT_FOUND = "user_not_found"
    SKIPPED = "skipped"


class UpsertOutcome(str, Enum):
    """Result of a conditional subscription-state write."""

    WRITTEN = "written"
    STALE = "stale"
    MISSING = "missing"


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class RecordStore:
    """Keyed-record RPCs over the SubSync DynamoDB tables."""

    def __init__(
        self,
        dynamodb=None,
        users_table: str = "subsync-users",
        refunds_table: str = "subsync-refunds",
        admins_table: str = "subsync-admins",
        billing_events_table: str = "subsync-billing-events",
    ):
        dynamodb = dynamodb or get_dynamodb()
        self.users = dynamodb.Table(users_table)
        self.refunds = dynamodb.Table(refunds_table)
        self.admins = dynamodb.Table(admins_table)
        self.billing_events = dynamodb.Table(billing_events_table)

    @classmethod
    def from_config(cls, config: BillingConfig, dynamodb=None) -> "RecordStore":
        return cls(
            dynamodb=dynamodb,
            users_table=config.users_table,
            refunds_table=config.refunds_table,
            admins_table=config.admins_table,
            billing_events_table=config.billing_events_table,
        )

    # ===========================================
    # Users
    # ===========================================

    def _query_user(self, index_name: str, attribute: str, value: str) -> Optional[UserRecord]:
        response = self.users.query(
            IndexName=index_name,
            KeyConditionExpression=Key(attribute).eq(value),
        )
        for item in response.get("Items", []):
            if item.get("sk") == USER_PROFILE_SK:
                return item
        return None

    def get_user_by_customer_id(self, customer_id: str) -> Optional[UserRecord]:
        """Look up a user by Stripe customer ID using GSI."""
        if not customer_id:
            return None
        return self._query_user("billing-customer-index", "billing_customer_id", customer_id)

    def get_user_by_external_identity_id(self, external_identity_id: str) -> Optional[UserRecord]:
        """Look up a user by identity-provider user ID using GSI."""
        if not external_identity_id:
            return None
        return self._query_user("external-identity-index", "external_identity_id", external_identity_id)

    def upsert_user_subscription(
        self,
        user_id: str,
        *,
        subscription_plan_id: str,
        billing_subscription_id: str,
        subscription_status: str,
        current_period_end_ms: int,
        auto_renew: bool,
        event_created: Optional[int] = None,
    ) -> UpsertOutcome:
        """Write the full subscription tuple to one user in a single update.

        When event_created is given, the write only applies if no newer event
        has already been reconciled into this record.
        """
        update_expr = (
            "SET subscription_plan_id = :plan, "
            "billing_subscription_id = :sub_id, "
            "subscription_status = :status, "
            "current_period_end_ms = :period_end, "
            "auto_renew = :auto_renew, "
            "updated_at = :now"
        )
        condition = "attribute_exists(pk)"
        values: dict[str, Any] = {
            ":plan": subscription_plan_id,
            ":sub_id": billing_subscription_id,
            ":status": subscription_status,
            ":period_end": int(current_period_end_ms),
            ":auto_renew": bool(auto_renew),
            ":now": now_ms(),
        }

        if event_created is not None:
            update_expr += ", last_event_created = :created"
            condition += " AND (attribute_not_exists(last_event_created) OR last_event_created <= :created)"
            values[":created"] = int(event_created)

        try:
            self.users.update_item(
                Key={"pk": user_id, "sk": USER_PROFILE_SK},
                UpdateExpression=update_expr,
                ConditionExpression=condition,
                ExpressionAttributeValues=values,
            )
            return UpsertOutcome.WRITTEN
        except ClientError as e:
            if not _is_conditional_failure(e):
                raise

        # Condition failed: either the record vanished or a newer event won
        existing = self.users.get_item(Key={"pk": user_id, "sk": USER_PROFILE_SK}).get("Item")
        if not existing:
            return UpsertOutcome.MISSING
        return UpsertOutcome.STALE

    def link_customer_id(self, external_identity_id: str, customer_id: str) -> LinkOutcome:
        """Attach a Stripe customer ID to the user, first write wins.

        The conditional write makes the check-and-set atomic: a concurrent
        delivery that links a different customer first is never overwritten.
        """
        user = self.get_user_by_external_identity_id(external_identity_id)
        if not user:
            return LinkOutcome.USER_NOT_FOUND

        try:
            self.users.update_item(
                Key={"pk": user["pk"], "sk": USER_PROFILE_SK},
                UpdateExpression="SET billing_customer_id = :cust, updated_at = :now",
                ConditionExpression="attribute_exists(pk) AND attribute_not_exists(billing_customer_id)",
                ExpressionAttributeValues={":cust": customer_id, ":now": now_ms()},
            )
            return LinkOutcome.LINKED
        except ClientError as e:
            if not _is_conditional_failure(e):
                raise

        current = self.get_user_by_external_identity_id(external_identity_id)
        if not current:
            return LinkOutcome.USER_NOT_FOUND
        if current.get("billing_customer_id") == customer_id:
            return LinkOutcome.ALREADY_LINKED
        return LinkOutcome.CONFLICT

    def list_non_free_users(self) -> list[UserRecord]:
        """Scan all users whose plan is set and is not the free plan."""
        scan_kwargs = {
            "FilterExpression": (
                Attr("sk").eq(USER_PROFILE_SK)
                & Attr("subscription_plan_id").exists()
                & Attr("subscription_plan_id").ne(FREE_PLAN)
            ),
        }
        return _scan_all(self.users, scan_kwargs)

    # ===========================================
    # Refund ledger (append-only)
    # ===========================================

    def list_refunds(self) -> list[RefundRecord]:
        return _scan_all(self.refunds, {})

    def append_refund(
        self,
        billing_subscription_id: str,
        amount: float | Decimal,
        refund_id: str,
        billing_customer_id: str = "",
        reason: str = "",
        created_at: Optional[int] = None,
    ) -> RefundRecord:
        """Append one refund. Existing entries are never overwritten.

        No webhook writes refunds; refunds are issued out of band and this is
        the entry point for seeding the ledger from those records.
        """
        created_at = created_at if created_at is not None else now_ms()
        item: RefundRecord = {
            "pk": billing_subscription_id,
            "sk": f"{created_at}#{refund_id}",
            "billing_subscription_id": billing_subscription_id,
            "billing_customer_id": billing_customer_id,
            "refund_id": refund_id,
            "amount": Decimal(str(amount)),
            "reason": reason,
            "created_at": created_at,
        }
        item = {k: v for k, v in item.items() if v != ""}
        self.refunds.put_item(
            Item=item,
            ConditionExpression="attribute_not_exists(pk)",
        )
        return item

    # ===========================================
    # Admins
    # ===========================================

    def get_admin(self, external_identity_id: str) -> Optional[AdminRecord]:
        if not external_identity_id:
            return None
        response = self.admins.get_item(Key={"pk": external_identity_id, "sk": ADMIN_SK})
        return response.get("Item")

    def list_admins(self) -> list[AdminRecord]:
        """All admins, most recently promoted first."""
        admins = _scan_all(self.admins, {"FilterExpression": Attr("sk").eq(ADMIN_SK)})
        return sorted(admins, key=lambda a: int(a.get("became_admin_at", 0)), reverse=True)

    def list_admins_by_access_level(self, access_level: str) -> list[AdminRecord]:
        response = self.admins.query(
            IndexName="access-level-index",
            KeyConditionExpression=Key("access_level").eq(access_level),
        )
        items = response.get("Items", [])
        while "LastEvaluatedKey" in response:
            response = self.admins.query(
                IndexName="access-level-index",
                KeyConditionExpression=Key("access_level").eq(access_level),
                ExclusiveStartKey=response["LastEvaluatedKey"],
            )
            items.extend(response.get("Items", []))
        return items

    def put_admin(self, record: AdminRecord) -> bool:
        """Create an admin record. Returns False if one already exists."""
        item = {**record, "pk": record["external_identity_id"], "sk": ADMIN_SK}
        try:
            self.admins.put_item(Item=item, ConditionExpression="attribute_not_exists(pk)")
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise

    def update_admin_access_level(self, external_identity_id: str, access_level: str) -> bool:
        """Change an admin's access level. Returns False if the admin is gone."""
        try:
            self.admins.update_item(
                Key={"pk": external_identity_id, "sk": ADMIN_SK},
                UpdateExpression="SET access_level = :level, updated_at = :now",
                ConditionExpression="attribute_exists(pk)",
                ExpressionAttributeValues={":level": access_level, ":now": now_ms()},
            )
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise

    def delete_admin(self, external_identity_id: str, caller_identity_id: str) -> bool:
        """Delete an admin on behalf of a Full admin, atomically.

        The delete and a check that the caller is still a Full admin run in one
        transaction, so two Full admins removing each other concurrently can
        never leave the table without a Full admin. Returns False when the
        target is gone or the caller is no longer Full.
        """
        client = self.admins.meta.client
        try:
            client.transact_write_items(
                TransactItems=[
                    {
                        "Delete": {
                            "TableName": self.admins.name,
                            "Key": {"pk": {"S": external_identity_id}, "sk": {"S": ADMIN_SK}},
                            "ConditionExpression": "attribute_exists(pk)",
                        }
                    },
                    {
                        "ConditionCheck": {
                            "TableName": self.admins.name,
                            "Key": {"pk": {"S": caller_identity_id}, "sk": {"S": ADMIN_SK}},
                            "ConditionExpression": "access_level = :full",
                            "ExpressionAttributeValues": {":full": {"S": ACCESS_FULL}},
                        }
                    },
                ]
            )
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "TransactionCanceledException":
                logger.warning(f"Delete of admin {external_identity_id} by {caller_identity_id} cancelled: {e}")
                return False
            raise

    # ===========================================
    # Billing Event Audit Trail
    # ===========================================

    def record_billing_event(
        self,
        event: dict,
        status: str,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record webhook event outcome for audit trail (best-effort).

        Uses event_id as PK. Failures are logged but do not affect the
        webhook response.
        """
        try:
            ttl = int((datetime.now(timezone.utc) + timedelta(days=BILLING_EVENT_TTL_DAYS)).timestamp())
            data_object = (event.get("data") or {}).get("object") or {}
            customer = data_object.get("customer")
            if isinstance(customer, dict):
                customer = customer.get("id")

            self.billing_events.put_item(
                Item={
                    "pk": event.get("id") or "unknown",
                    "sk": event.get("type") or "unknown",
                    "customer_id": customer or "unknown",
                    "processed_at": datetime.now(timezone.utc).isoformat(),
                    "event_created_at": event.get("created"),
                    "livemode": event.get("livemode"),
                    "status": status,
                    "error_kind": error_kind,
                    "error": error,
                    "ttl": ttl,
                }
            )
        except Exception as e:
            # Best-effort - audit recording should not block webhook response
            logger.error(f"Failed to record billing event {event.get('id')}: {e}")


def _scan_all(table, scan_kwargs: dict) -> list[dict]:
    """Full table scan with pagination, preserving DynamoDB's return order."""
    items = []
    scan_kwargs = dict(scan_kwargs)
    while True:
        response = table.scan(**scan_kwargs)
        items.extend(response.get("Items", []))
        if "LastEvaluatedKey" not in response:
            break
        scan_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
    return items
