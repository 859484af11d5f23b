"""Domain models for am_entitlement: grants and the access rule over them."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from src.am_common.enums import EntitlementKind


@dataclass
class Entitlement:
    id: str
    user_id: str
    subject_id: str                 # agent id, listing id, or LISTING_CREDIT
    kind: str                       # EntitlementKind value
    granted_from: str               # purchase_intents.id, UNIQUE
    expires_at: datetime | None     # SUBSCRIPTION only
    credit_points: int | None       # CREDIT only
    created_at: datetime

    def grants_access_at(self, at: datetime) -> bool:
        if self.kind == EntitlementKind.OWNED:
            return True
        if self.kind == EntitlementKind.SUBSCRIPTION:
            return self.expires_at is not None and self.expires_at > at
        return False


@dataclass
class CreditRedemption:
    id: str
    user_id: str
    listing_id: str
    points: int
    created_at: datetime


def has_access(entitlements: Iterable[Entitlement], at: datetime) -> bool:
    """True if any entitlement is OWNED or a subscription still running at `at`."""
    return any(e.grants_access_at(at) for e in entitlements)


def access_not_after(entitlements: Iterable[Entitlement], at: datetime) -> datetime | None:
    """Latest moment access is justified, None when ownership makes it unbounded.

    Overlapping subscriptions take the maximum expiry.
    Call only when has_access() is true.
    """
    latest: datetime | None = None
    for e in entitlements:
        if not e.grants_access_at(at):
            continue
        if e.kind == EntitlementKind.OWNED:
            return None
        if latest is None or (e.expires_at is not None and e.expires_at > latest):
            latest = e.expires_at
    return latest
