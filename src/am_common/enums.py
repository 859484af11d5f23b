"""Global enums: must match DB CHECK constraints exactly.

See alembic/versions/002-006 for the constraint definitions.
"""

from enum import Enum


class ListingState(str, Enum):
    ACTIVE = "ACTIVE"
    DELISTED = "DELISTED"
    SOLD = "SOLD"


class PurchaseKind(str, Enum):
    FULL_TRANSFER = "FULL_TRANSFER"
    SUBSCRIPTION = "SUBSCRIPTION"
    LISTING_CREDIT = "LISTING_CREDIT"


class PurchaseStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    # Buyer-initiated; a later verified payment still wins over the cancel
    CANCELLED = "CANCELLED"


class SettlementRail(str, Enum):
    """Where the payment for an intent is observed."""
    CHAIN = "CHAIN"
    GATEWAY = "GATEWAY"


class EntitlementKind(str, Enum):
    OWNED = "OWNED"
    SUBSCRIPTION = "SUBSCRIPTION"
    CREDIT = "CREDIT"


class AlertKind(str, Enum):
    RETRY_BUDGET_EXHAUSTED = "RETRY_BUDGET_EXHAUSTED"
    ATOMIC_COMMIT_FAILURE = "ATOMIC_COMMIT_FAILURE"
    DUPLICATE_GRANT = "DUPLICATE_GRANT"
    REFUND_REQUIRED = "REFUND_REQUIRED"
    FEE_DRIFT = "FEE_DRIFT"


class SettlementOutcomeStatus(str, Enum):
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"
    IGNORED = "IGNORED"


# Subject id under which listing-credit entitlements are granted.
LISTING_CREDIT_SUBJECT = "LISTING_CREDIT"
