"""Fee split for settled purchases.

Listing-credit purchases are pure listing fees: the whole amount is platform
revenue. Every other purchase leaves a marketplace cut of fee_bps on the gross
amount, rounded up (ceiling division, the platform never under-collects).

The split is a pure function of (kind, gross_amount, fee_bps); every fee
ledger entry records all three so totals can be re-derived at any time.
"""

from dataclasses import dataclass
from datetime import datetime

from src.am_common.enums import PurchaseKind
from src.am_common.units import calculate_fee


@dataclass(frozen=True)
class FeeSplit:
    listing_fee: int
    marketplace_cut: int

    @property
    def total(self) -> int:
        return self.listing_fee + self.marketplace_cut


@dataclass
class FeeLedgerEntry:
    id: str
    purchase_intent_id: str
    kind: str
    currency: str
    gross_amount: int
    fee_bps: int
    listing_fee_amount: int
    marketplace_cut_amount: int
    settled_at: datetime

    def conforms(self) -> bool:
        """True if the recorded split matches the fee function of its own inputs."""
        expected = compute_fee_split(PurchaseKind(self.kind), self.gross_amount, self.fee_bps)
        return (
            expected.listing_fee == self.listing_fee_amount
            and expected.marketplace_cut == self.marketplace_cut_amount
        )


@dataclass
class FeeTotals:
    currency: str
    listing_fees: int = 0
    marketplace_cuts: int = 0
    entries: int = 0

    @property
    def total(self) -> int:
        return self.listing_fees + self.marketplace_cuts


def compute_fee_split(kind: PurchaseKind, gross_amount: int, fee_bps: int) -> FeeSplit:
    if kind == PurchaseKind.LISTING_CREDIT:
        return FeeSplit(listing_fee=gross_amount, marketplace_cut=0)
    return FeeSplit(listing_fee=0, marketplace_cut=calculate_fee(gross_amount, fee_bps))


def sum_entries(entries: list[FeeLedgerEntry]) -> dict[str, FeeTotals]:
    """Recompute per-currency totals from ledger entries."""
    totals: dict[str, FeeTotals] = {}
    for e in entries:
        t = totals.setdefault(e.currency, FeeTotals(currency=e.currency))
        t.listing_fees += e.listing_fee_amount
        t.marketplace_cuts += e.marketplace_cut_amount
        t.entries += 1
    return totals
