# Shared utilities package
from .errors import APIError, BillingErrorKind
from .record_store import LinkOutcome, RecordStore, UpsertOutcome
from .response_utils import error_response, success_response

__all__ = [
    "RecordStore",
    "LinkOutcome",
    "UpsertOutcome",
    "BillingErrorKind",
    "error_response",
    "success_response",
    "APIError",
]
