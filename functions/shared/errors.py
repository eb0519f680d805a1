"""
Standardized errors for the API and the billing reconciliation pipeline.
"""

import json
from enum import Enum
from typing import Optional


class BillingErrorKind(str, Enum):
    """Why a single webhook event could not be reconciled."""

    INVALID_SIGNATURE = "invalid_signature"
    INVALID_PAYLOAD = "invalid_payload"
    INVALID_EVENT_DATA = "invalid_event_data"
    UNRESOLVED_PLAN = "unresolved_plan"
    UNRESOLVED_PERIOD = "unresolved_period"
    USER_NOT_FOUND = "user_not_found"
    DOWNSTREAM_WRITE_FAILURE = "downstream_write_failure"
    PROCESSOR_ERROR = "processor_error"


class APIError(Exception):
    """Base class for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API Gateway response format."""
        body = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            body["error"]["details"] = self.details

        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }


class InvalidSignatureError(APIError):
    """Raised when a webhook payload fails signature verification."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(
            code=BillingErrorKind.INVALID_SIGNATURE.value,
            message=message,
            status_code=400,
        )


class InvalidPayloadError(APIError):
    """Raised when a verified webhook payload is not a usable event."""

    def __init__(self, message: str = "Invalid webhook payload"):
        super().__init__(
            code=BillingErrorKind.INVALID_PAYLOAD.value,
            message=message,
            status_code=400,
        )


class UnauthenticatedError(APIError):
    """Raised when no caller identity reached the handler."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(code="unauthorized", message=message, status_code=401)


class AccessDeniedError(APIError):
    """Raised when the caller lacks the required admin privileges."""

    def __init__(self, message: str = "Admin privileges required"):
        super().__init__(code="access_denied", message=message, status_code=403)


class AdminNotFoundError(APIError):
    """Raised when the targeted admin record does not exist."""

    def __init__(self, external_identity_id: str):
        super().__init__(
            code="admin_not_found",
            message=f"Admin '{external_identity_id}' not found",
            status_code=404,
        )


class AdminConflictError(APIError):
    """Raised when an admin change would break an admin invariant."""

    def __init__(self, code: str, message: str):
        super().__init__(code=code, message=message, status_code=409)


class InvalidRequestError(APIError):
    """Raised for general invalid request errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="invalid_request",
            message=message,
            status_code=400,
            details=details,
        )

