"""Domain models for am_purchase: pure dataclasses, no business logic."""

from dataclasses import dataclass
from datetime import datetime

from src.am_common.enums import PurchaseStatus


@dataclass
class PurchaseIntent:
    id: str
    listing_id: str | None          # None for LISTING_CREDIT purchases
    buyer_id: str
    kind: str                       # PurchaseKind value
    rail: str                       # SettlementRail value
    declared_amount: int            # minor units the payment must carry
    currency: str
    payment_reference: str          # tx hash or gateway tx_ref, UNIQUE
    terms_hash: str | None          # listing terms hash at creation time
    duration_seconds: int | None    # SUBSCRIPTION length at creation time
    payer_address: str | None       # chain buyer address, when declared
    credit_points: int | None       # LISTING_CREDIT only
    payment_link: str | None        # gateway checkout link
    status: str                     # PurchaseStatus value
    attempts: int
    last_error: str | None
    observed_at: datetime | None    # payment first seen matching, blocks cancellation
    verified_at: datetime | None
    reject_reason: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in (PurchaseStatus.VERIFIED, PurchaseStatus.REJECTED)

    @property
    def is_cancellable(self) -> bool:
        return self.status == PurchaseStatus.PENDING and self.observed_at is None
