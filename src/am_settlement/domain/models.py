"""Domain models for am_settlement: operational alerts and signal outcomes."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class SettlementAlert:
    """Support-visible record of something reconciliation could not resolve alone."""

    id: str
    kind: str                       # AlertKind value
    payment_reference: str | None
    purchase_intent_id: str | None
    detail: str
    created_at: datetime


@dataclass(frozen=True)
class SettlementOutcome:
    """What handling one settlement signal did."""

    payment_reference: str
    status: str                     # SettlementOutcomeStatus value
    purchase_intent_id: str | None = None
    entitlement_id: str | None = None
    reason: str | None = None
    # True when the intent was already terminal and nothing was written
    replayed: bool = False
