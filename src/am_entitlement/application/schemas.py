"""Pydantic schemas for am_entitlement API responses."""

from pydantic import BaseModel

from src.am_common.datetime_utils import isoformat_or_none
from src.am_entitlement.domain.models import Entitlement


class EntitlementResponse(BaseModel):
    id: str
    subject_id: str
    kind: str
    granted_from: str
    expires_at: str | None
    credit_points: int | None
    created_at: str

    @classmethod
    def from_domain(cls, e: Entitlement) -> "EntitlementResponse":
        return cls(
            id=e.id,
            subject_id=e.subject_id,
            kind=e.kind,
            granted_from=e.granted_from,
            expires_at=isoformat_or_none(e.expires_at),
            credit_points=e.credit_points,
            created_at=e.created_at.isoformat(),
        )


class EntitlementListResponse(BaseModel):
    items: list[EntitlementResponse]
    next_cursor: str | None
    has_more: bool


class AccessResponse(BaseModel):
    subject_id: str
    has_access: bool
    checked_at: str


class CredentialResponse(BaseModel):
    subject_id: str
    credential: str
    token_type: str = "Bearer"
    expires_at: str


class CreditBalanceResponse(BaseModel):
    user_id: str
    balance: int
