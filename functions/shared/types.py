"""
Shared Type Definitions for Lambda Handlers.

Provides TypedDict definitions for AWS Lambda events, responses and the
DynamoDB records the billing pipeline reads and writes.
"""

from typing import TypedDict, Optional, Any


class APIGatewayEvent(TypedDict, total=False):
    """API Gateway proxy event structure."""

    httpMethod: str
    headers: dict[str, str]
    pathParameters: Optional[dict[str, str]]
    queryStringParameters: Optional[dict[str, str]]
    body: Optional[str]
    requestContext: dict[str, Any]
    resource: str
    path: str
    isBase64Encoded: bool


class LambdaResponse(TypedDict):
    """Standard Lambda response structure."""

    statusCode: int
    headers: dict[str, str]
    body: str


class UserRecord(TypedDict, total=False):
    """User item in the users table (pk=internal user id, sk=PROFILE)."""

    pk: str
    sk: str
    external_identity_id: str
    email: str
    name: str
    billing_customer_id: str
    billing_subscription_id: str
    subscription_plan_id: str
    subscription_status: str
    current_period_end_ms: int
    auto_renew: bool
    updated_at: int
    created_at: int
    last_event_created: int


class RefundRecord(TypedDict, total=False):
    """Append-only refund ledger entry."""

    pk: str  # billing subscription id
    sk: str  # "<created_at ms>#<refund id>"
    billing_subscription_id: str
    billing_customer_id: str
    refund_id: str
    amount: Any  # Decimal from DynamoDB
    reason: str
    created_at: int


class AdminRecord(TypedDict, total=False):
    """Admin item in the admins table (pk=external identity id, sk=ADMIN)."""

    pk: str
    sk: str
    external_identity_id: str
    access_level: str
    email: str
    name: str
    became_admin_at: int
    updated_at: int
