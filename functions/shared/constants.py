"""
Shared constants for SubSync.
"""

# Plan catalogue
FREE_PLAN = "free"

PLAN_MONTHLY_PRICES = {
    "free": 0,
    "pro": 19,
    "enterprise": 49,
}

PLAN_DISPLAY_NAMES = {
    "free": "Basic",
    "pro": "Pro",
    "enterprise": "Enterprise",
}

# Statuses that count toward recurring revenue
REVENUE_STATUSES = ("active", "trialing")

# Admin access levels, highest first
ACCESS_FULL = "Full"
ACCESS_PARTIAL = "Partial"
ACCESS_LIMITED = "Limited"
ACCESS_LEVELS = (ACCESS_FULL, ACCESS_PARTIAL, ACCESS_LIMITED)

# DynamoDB sort keys
USER_PROFILE_SK = "PROFILE"
ADMIN_SK = "ADMIN"

# Webhook signature tolerance (seconds)
DEFAULT_SIGNATURE_TOLERANCE = 300

# Audit records expire after 90 days
BILLING_EVENT_TTL_DAYS = 90

# Analytics sorting
SORT_FIELDS = ("name", "email", "subscription", "date", "amount")
SORT_ORDERS = ("asc", "desc")

