"""
Tests for the DynamoDB record store.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from conftest import get_user, make_event, make_subscription, put_admin, put_user


class TestUserLookups:
    """Tests for user GSI lookups."""

    @mock_aws
    def test_get_user_by_customer_id(self, mock_dynamodb, record_store):
        put_user(mock_dynamodb, "user_1", billing_customer_id="cus_1")

        assert record_store.get_user_by_customer_id("cus_1")["pk"] == "user_1"
        assert record_store.get_user_by_customer_id("cus_missing") is None
        assert record_store.get_user_by_customer_id("") is None

    @mock_aws
    def test_get_user_by_external_identity_id(self, mock_dynamodb, record_store):
        put_user(mock_dynamodb, "user_1", external_identity_id="idp_1")

        assert record_store.get_user_by_external_identity_id("idp_1")["pk"] == "user_1"
        assert record_store.get_user_by_external_identity_id("idp_missing") is None


class TestUpsertUserSubscription:
    """Tests for upsert_user_subscription."""

    def _upsert(self, store, user_id="user_1", **overrides):
        values = {
            "subscription_plan_id": "pro",
            "billing_subscription_id": "sub_1",
            "subscription_status": "active",
            "current_period_end_ms": 1735689600000,
            "auto_renew": True,
        }
        values.update(overrides)
        return store.upsert_user_subscription(user_id, **values)

    @mock_aws
    def test_writes_all_fields(self, mock_dynamodb, record_store):
        from shared.record_store import UpsertOutcome

        put_user(mock_dynamodb, "user_1", email="a@example.com")

        assert self._upsert(record_store) == UpsertOutcome.WRITTEN

        user = get_user(mock_dynamodb, "user_1")
        assert user["subscription_plan_id"] == "pro"
        assert user["current_period_end_ms"] == 1735689600000
        # Untouched attributes survive
        assert user["email"] == "a@example.com"

    @mock_aws
    def test_missing_user_is_not_created(self, mock_dynamodb, record_store):
        from shared.record_store import UpsertOutcome

        assert self._upsert(record_store, "ghost") == UpsertOutcome.MISSING
        assert get_user(mock_dynamodb, "ghost") is None

    @mock_aws
    def test_older_event_is_stale(self, mock_dynamodb, record_store):
        from shared.record_store import UpsertOutcome

        put_user(mock_dynamodb, "user_1")

        assert self._upsert(record_store, event_created=200) == UpsertOutcome.WRITTEN
        assert self._upsert(record_store, subscription_status="past_due", event_created=100) == UpsertOutcome.STALE
        assert self._upsert(record_store, subscription_status="canceled", event_created=200) == UpsertOutcome.WRITTEN
        assert get_user(mock_dynamodb, "user_1")["subscription_status"] == "canceled"

    @mock_aws
    def test_unexpected_client_error_propagates(self, mock_dynamodb, record_store):
        put_user(mock_dynamodb, "user_1")
        error = ClientError({"Error": {"Code": "ValidationException", "Message": "bad"}}, "UpdateItem")

        with patch.object(record_store.users, "update_item", side_effect=error):
            with pytest.raises(ClientError):
                self._upsert(record_store)


class TestListNonFreeUsers:
    @mock_aws
    def test_filters_free_and_planless(self, mock_dynamodb, record_store):
        put_user(mock_dynamodb, "user_pro", subscription_plan_id="pro")
        put_user(mock_dynamodb, "user_free", subscription_plan_id="free")
        put_user(mock_dynamodb, "user_none", subscription_plan_id=None)

        users = record_store.list_non_free_users()

        assert [u["pk"] for u in users] == ["user_pro"]


class TestRefundLedger:
    @mock_aws
    def test_append_and_list(self, mock_dynamodb, record_store):
        record_store.append_refund("sub_1", 19.99, "re_1", billing_customer_id="cus_1", created_at=1000)
        record_store.append_refund("sub_1", 5, "re_2", created_at=2000)

        refunds = record_store.list_refunds()

        assert len(refunds) == 2
        assert {r["amount"] for r in refunds} == {Decimal("19.99"), Decimal("5")}

    @mock_aws
    def test_entries_never_overwritten(self, mock_dynamodb, record_store):
        record_store.append_refund("sub_1", 10, "re_1", created_at=1000)

        with pytest.raises(ClientError):
            record_store.append_refund("sub_1", 99, "re_1", created_at=1000)

        assert record_store.list_refunds()[0]["amount"] == Decimal("10")


class TestAdmins:
    @mock_aws
    def test_list_admins_newest_first(self, mock_dynamodb, record_store):
        put_admin(mock_dynamodb, "idp_old", "Full", became_admin_at=1000)
        put_admin(mock_dynamodb, "idp_new", "Limited", became_admin_at=2000)

        assert [a["pk"] for a in record_store.list_admins()] == ["idp_new", "idp_old"]

    @mock_aws
    def test_list_admins_by_access_level(self, mock_dynamodb, record_store):
        put_admin(mock_dynamodb, "idp_a", "Full")
        put_admin(mock_dynamodb, "idp_b", "Full")
        put_admin(mock_dynamodb, "idp_c", "Partial")

        full = record_store.list_admins_by_access_level("Full")

        assert sorted(a["pk"] for a in full) == ["idp_a", "idp_b"]

    @mock_aws
    def test_put_admin_is_conditional(self, mock_dynamodb, record_store):
        record = {"external_identity_id": "idp_a", "access_level": "Full", "became_admin_at": 1}

        assert record_store.put_admin(record) is True
        assert record_store.put_admin({**record, "access_level": "Limited"}) is False
        assert record_store.get_admin("idp_a")["access_level"] == "Full"

    @mock_aws
    def test_update_missing_admin(self, mock_dynamodb, record_store):
        assert record_store.update_admin_access_level("idp_ghost", "Full") is False

    @mock_aws
    def test_delete_admin_requires_full_caller(self, mock_dynamodb, record_store):
        put_admin(mock_dynamodb, "idp_full", "Full")
        put_admin(mock_dynamodb, "idp_limited", "Limited")
        put_admin(mock_dynamodb, "idp_target", "Partial")

        assert record_store.delete_admin("idp_target", "idp_limited") is False
        assert record_store.get_admin("idp_target") is not None

        assert record_store.delete_admin("idp_target", "idp_full") is True
        assert record_store.get_admin("idp_target") is None

    @mock_aws
    def test_delete_missing_admin(self, mock_dynamodb, record_store):
        put_admin(mock_dynamodb, "idp_full", "Full")

        assert record_store.delete_admin("idp_ghost", "idp_full") is False


class TestRecordBillingEvent:
    @mock_aws
    def test_records_expanded_customer(self, mock_dynamodb, record_store):
        event = make_event("customer.subscription.created", make_subscription(customer={"id": "cus_9"}), "evt_9")

        record_store.record_billing_event(event, "success")

        item = mock_dynamodb.Table("subsync-billing-events").get_item(
            Key={"pk": "evt_9", "sk": "customer.subscription.created"}
        )["Item"]
        assert item["customer_id"] == "cus_9"
        assert item["status"] == "success"
        assert item["ttl"] > 0

    @mock_aws
    def test_failures_are_swallowed(self, mock_dynamodb, record_store):
        error = ClientError({"Error": {"Code": "InternalServerError", "Message": "down"}}, "PutItem")

        with patch.object(record_store.billing_events, "put_item", side_effect=error):
            record_store.record_billing_event(make_event("invoice.payment_failed", {}), "failed")
