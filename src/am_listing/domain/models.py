"""Domain models for am_listing: pure dataclasses plus terms validation."""

from dataclasses import dataclass
from datetime import datetime

from src.am_chain.domain.actions import ListingTerms
from src.am_common.enums import ListingState, PurchaseKind
from src.am_common.errors import InvalidTermsError


@dataclass
class Listing:
    id: str
    seller_id: str
    agent_id: str | None
    price: int                      # minor units of `currency`
    full_price: int | None
    duration_seconds: int | None    # present iff subscriptions are offered
    currency: str
    terms_hash: str
    state: str                      # ListingState value
    created_at: datetime
    updated_at: datetime

    @property
    def terms(self) -> ListingTerms:
        return ListingTerms(
            price=self.price,
            full_price=self.full_price,
            duration=self.duration_seconds,
            seller=self.seller_id,
        )

    @property
    def is_active(self) -> bool:
        return self.state == ListingState.ACTIVE

    @property
    def offers_subscription(self) -> bool:
        return self.duration_seconds is not None

    @property
    def subject_id(self) -> str:
        """What an entitlement bought from this listing grants access to."""
        return self.agent_id or self.id

    def offers(self, kind: PurchaseKind) -> bool:
        if kind == PurchaseKind.SUBSCRIPTION:
            return self.offers_subscription
        return kind == PurchaseKind.FULL_TRANSFER

    def expected_amount(self, kind: PurchaseKind) -> int:
        """Amount a buyer must pay for `kind`: full price when set, else price."""
        if kind == PurchaseKind.FULL_TRANSFER and self.full_price is not None:
            return self.full_price
        return self.price


def normalize_terms(
    price: int, full_price: int | None, duration_seconds: int | None
) -> tuple[int, int | None, int | None]:
    """Validate listing terms; returns them with a zero duration folded to None.

    Raises:
        InvalidTermsError: price <= 0, full price < price, or negative duration.
    """
    if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
        raise InvalidTermsError("price must be a positive integer")
    if full_price is not None and full_price < price:
        raise InvalidTermsError("full price must be at least the price")
    if duration_seconds is not None and duration_seconds < 0:
        raise InvalidTermsError("duration must not be negative")
    return price, full_price, duration_seconds or None
