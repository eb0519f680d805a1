"""
Shared pytest fixtures for SubSync tests.
"""

import hashlib
import hmac
import json
import os
import sys
import time
from decimal import Decimal

import boto3
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))

TEST_WEBHOOK_SECRET = "whsec_test_secret_key"
TEST_STRIPE_API_KEY = "sk_test_xxx"


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 resource
    creation during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Reset shared AWS client singletons between tests."""
    yield
    try:
        from shared.aws_clients import reset_clients
        reset_clients()
    except ImportError:
        pass


@pytest.fixture(autouse=True)
def reset_stripe_secrets_cache():
    """Reset the Stripe secrets cache between tests to prevent pollution."""
    from shared.config import reset_secrets_cache

    reset_secrets_cache()
    yield
    reset_secrets_cache()


@pytest.fixture(autouse=True)
def reset_event_ordering_env():
    """Tests opt into the ordering guard explicitly."""
    os.environ.pop("ENFORCE_EVENT_ORDERING", None)
    yield
    os.environ.pop("ENFORCE_EVENT_ORDERING", None)


def create_dynamodb_tables(dynamodb):
    """Create all DynamoDB tables with their GSIs.

    Args:
        dynamodb: boto3 DynamoDB resource
    """
    # Users table with lookups by identity and Stripe customer
    dynamodb.create_table(
        TableName="subsync-users",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "external_identity_id", "AttributeType": "S"},
            {"AttributeName": "billing_customer_id", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "external-identity-index",
                "KeySchema": [{"AttributeName": "external_identity_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": "billing-customer-index",
                "KeySchema": [{"AttributeName": "billing_customer_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Append-only refund ledger
    dynamodb.create_table(
        TableName="subsync-refunds",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Admins table with access level lookup
    dynamodb.create_table(
        TableName="subsync-admins",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "access_level", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "access-level-index",
                "KeySchema": [{"AttributeName": "access_level", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Billing events audit trail
    dynamodb.create_table(
        TableName="subsync-billing-events",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def mock_dynamodb():
    """Provide mocked DynamoDB with tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_dynamodb_tables(dynamodb)
        yield dynamodb


@pytest.fixture
def record_store(mock_dynamodb):
    """RecordStore bound to the mocked tables."""
    from shared.record_store import RecordStore

    return RecordStore(dynamodb=mock_dynamodb)


def put_user(dynamodb, user_id, **attrs):
    """Insert a user profile. Attributes set to None are left out."""
    item = {
        "pk": user_id,
        "sk": "PROFILE",
        "email": f"{user_id}@example.com",
        "subscription_plan_id": "free",
        "created_at": 1700000000000,
    }
    item.update(attrs)
    item = {k: v for k, v in item.items() if v is not None}
    dynamodb.Table("subsync-users").put_item(Item=item)
    return item


def get_user(dynamodb, user_id):
    return dynamodb.Table("subsync-users").get_item(Key={"pk": user_id, "sk": "PROFILE"}).get("Item")


def put_admin(dynamodb, external_identity_id, access_level, became_admin_at=1700000000000):
    item = {
        "pk": external_identity_id,
        "sk": "ADMIN",
        "external_identity_id": external_identity_id,
        "access_level": access_level,
        "became_admin_at": became_admin_at,
    }
    dynamodb.Table("subsync-admins").put_item(Item=item)
    return item


def put_refund(dynamodb, subscription_id, amount, refund_id="re_1", created_at=1700000000000):
    item = {
        "pk": subscription_id,
        "sk": f"{created_at}#{refund_id}",
        "billing_subscription_id": subscription_id,
        "refund_id": refund_id,
        "amount": Decimal(str(amount)),
        "created_at": created_at,
    }
    dynamodb.Table("subsync-refunds").put_item(Item=item)
    return item


def sign_payload(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload}"
    signature = hmac.new(secret.encode("utf-8"), signed_payload.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_subscription(
    subscription_id="sub_123",
    customer="cus_123",
    price_id="price_pro_monthly",
    status="active",
    current_period_end=1735689600,
    cancel_at_period_end=False,
    metadata=None,
    item_level_period=False,
):
    """A Stripe subscription object as delivered in webhook payloads."""
    item = {"id": "si_1", "price": {"id": price_id}}
    subscription = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": metadata or {},
        "items": {"object": "list", "data": [item]},
    }
    if item_level_period:
        item["current_period_end"] = current_period_end
    elif current_period_end is not None:
        subscription["current_period_end"] = current_period_end
    return subscription


def make_event(event_type, data_object, event_id="evt_123", created=1735000000):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "livemode": False,
        "data": {"object": data_object},
    }


@pytest.fixture
def stripe_secrets():
    """Prime the Stripe secrets cache so handlers skip Secrets Manager."""
    import shared.config as config_module

    config_module._stripe_secrets_cache = (TEST_STRIPE_API_KEY, TEST_WEBHOOK_SECRET)
    config_module._stripe_secrets_cache_time = 9999999999.0
    return TEST_STRIPE_API_KEY, TEST_WEBHOOK_SECRET


@pytest.fixture
def webhook_event(api_gateway_event):
    """Build a signed API Gateway event for a Stripe event dict."""

    def _build(stripe_event, secret=TEST_WEBHOOK_SECRET, timestamp=None):
        payload = json.dumps(stripe_event)
        api_gateway_event["httpMethod"] = "POST"
        api_gateway_event["body"] = payload
        api_gateway_event["headers"] = {"stripe-signature": sign_payload(payload, secret, timestamp)}
        return api_gateway_event

    return _build


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event for Lambda handler tests."""
    return {
        "httpMethod": "GET",
        "headers": {},
        "pathParameters": {},
        "queryStringParameters": {},
        "body": None,
        "requestContext": {
            "requestId": "req-test",
            "identity": {"sourceIp": "127.0.0.1"},
        },
    }


@pytest.fixture
def authorized_event(api_gateway_event):
    """API Gateway event carrying an authorizer identity."""

    def _build(identity_id):
        api_gateway_event["requestContext"]["authorizer"] = {"claims": {"sub": identity_id}}
        return api_gateway_event

    return _build
