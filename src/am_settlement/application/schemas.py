"""Pydantic schemas for settlement responses."""

from pydantic import BaseModel

from src.am_settlement.domain.models import SettlementOutcome


class SettlementOutcomeResponse(BaseModel):
    payment_reference: str
    status: str
    purchase_intent_id: str | None
    entitlement_id: str | None
    reason: str | None
    replayed: bool

    @classmethod
    def from_domain(cls, o: SettlementOutcome) -> "SettlementOutcomeResponse":
        return cls(
            payment_reference=o.payment_reference,
            status=o.status,
            purchase_intent_id=o.purchase_intent_id,
            entitlement_id=o.entitlement_id,
            reason=o.reason,
            replayed=o.replayed,
        )
