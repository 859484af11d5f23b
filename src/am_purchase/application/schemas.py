# src/am_purchase/application/schemas.py
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.am_common.datetime_utils import isoformat_or_none
from src.am_common.units import minor_to_display
from src.am_purchase.domain.models import PurchaseIntent


class SubmitPurchaseRequest(BaseModel):
    kind: Literal["FULL_TRANSFER", "SUBSCRIPTION", "LISTING_CREDIT"]
    listing_id: str | None = None
    # LISTING_CREDIT only
    credit_points: int | None = Field(None, ge=1, le=10_000)
    # Chain rail: either the hash of an already-submitted transaction
    # or a signed transaction (CBOR hex) for the service to submit.
    tx_hash: str | None = Field(None, min_length=64, max_length=64)
    signed_tx: str | None = None

    @field_validator("tx_hash")
    @classmethod
    def lowercase_hex(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.lower()
        if any(c not in "0123456789abcdef" for c in v):
            raise ValueError("tx_hash must be hex")
        return v


class PurchaseIntentResponse(BaseModel):
    id: str
    listing_id: str | None
    kind: str
    rail: str
    declared_amount: int
    declared_amount_display: str
    currency: str
    payment_reference: str
    payment_link: str | None
    duration_seconds: int | None
    credit_points: int | None
    status: str
    attempts: int
    last_error: str | None
    reject_reason: str | None
    observed_at: str | None
    verified_at: str | None
    created_at: str

    @classmethod
    def from_domain(cls, intent: PurchaseIntent) -> "PurchaseIntentResponse":
        return cls(
            id=intent.id,
            listing_id=intent.listing_id,
            kind=intent.kind,
            rail=intent.rail,
            declared_amount=intent.declared_amount,
            declared_amount_display=minor_to_display(intent.declared_amount, intent.currency),
            currency=intent.currency,
            payment_reference=intent.payment_reference,
            payment_link=intent.payment_link,
            duration_seconds=intent.duration_seconds,
            credit_points=intent.credit_points,
            status=intent.status,
            attempts=intent.attempts,
            last_error=intent.last_error,
            reject_reason=intent.reject_reason,
            observed_at=isoformat_or_none(intent.observed_at),
            verified_at=isoformat_or_none(intent.verified_at),
            created_at=intent.created_at.isoformat(),
        )


class PurchaseIntentListResponse(BaseModel):
    items: list[PurchaseIntentResponse]
    next_cursor: str | None
    has_more: bool
