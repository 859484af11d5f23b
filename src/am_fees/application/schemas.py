"""Pydantic schemas for am_fees / platform API responses."""

from pydantic import BaseModel

from src.am_common.units import minor_to_display
from src.am_fees.domain.fee import FeeLedgerEntry, FeeTotals
from src.am_settlement.domain.models import SettlementAlert


class FeeTotalsItem(BaseModel):
    currency: str
    listing_fees: int
    marketplace_cuts: int
    total: int
    total_display: str
    entries: int

    @classmethod
    def from_domain(cls, t: FeeTotals) -> "FeeTotalsItem":
        return cls(
            currency=t.currency,
            listing_fees=t.listing_fees,
            marketplace_cuts=t.marketplace_cuts,
            total=t.total,
            total_display=minor_to_display(t.total, t.currency),
            entries=t.entries,
        )


class FeeEntryResponse(BaseModel):
    id: str
    purchase_intent_id: str
    kind: str
    currency: str
    gross_amount: int
    fee_bps: int
    listing_fee_amount: int
    marketplace_cut_amount: int
    settled_at: str

    @classmethod
    def from_domain(cls, e: FeeLedgerEntry) -> "FeeEntryResponse":
        return cls(
            id=e.id,
            purchase_intent_id=e.purchase_intent_id,
            kind=e.kind,
            currency=e.currency,
            gross_amount=e.gross_amount,
            fee_bps=e.fee_bps,
            listing_fee_amount=e.listing_fee_amount,
            marketplace_cut_amount=e.marketplace_cut_amount,
            settled_at=e.settled_at.isoformat(),
        )


class FeeAccountResponse(BaseModel):
    totals: list[FeeTotalsItem]
    recent_entries: list[FeeEntryResponse]
    next_cursor: str | None
    has_more: bool


class FeeVerificationResponse(BaseModel):
    ok: bool
    violations: list[str]
    checked_entries: int
    cache_checked: bool
    cache_repaired: bool


class PlatformStatsResponse(BaseModel):
    listings_by_state: dict[str, int]
    purchases_by_status: dict[str, int]
    entitlements: int
    fees: list[FeeTotalsItem]


class AlertResponse(BaseModel):
    id: str
    kind: str
    payment_reference: str | None
    purchase_intent_id: str | None
    detail: str
    created_at: str

    @classmethod
    def from_domain(cls, a: SettlementAlert) -> "AlertResponse":
        return cls(
            id=a.id,
            kind=a.kind,
            payment_reference=a.payment_reference,
            purchase_intent_id=a.purchase_intent_id,
            detail=a.detail,
            created_at=a.created_at.isoformat(),
        )
