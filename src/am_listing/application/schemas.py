"""Pydantic schemas for am_listing requests and responses.

Cursor format for listings (VARCHAR PK, not sequential):
  {"ts": "<created_at ISO>", "id": "<listing_id>"}
  Encoded as Base64 JSON string.
"""

import base64
import binascii
import json

from pydantic import BaseModel, Field

from src.am_common.units import minor_to_display
from src.am_listing.domain.models import Listing

# ---------------------------------------------------------------------------
# Cursor utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_listing: Listing) -> str:
    payload = {"ts": last_listing.created_at.isoformat(), "id": last_listing.id}
    return base64.b64encode(json.dumps(payload).encode()).decode()


def cursor_decode(cursor: str | None) -> tuple[str | None, str | None]:
    """Decode composite cursor -> (ts_iso, listing_id), or (None, None) on error."""
    if cursor is None:
        return None, None
    try:
        data = json.loads(base64.b64decode(cursor.encode()).decode())
        return data["ts"], data["id"]
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
        return None, None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreateListingRequest(BaseModel):
    agent_id: str | None = Field(None, max_length=64)
    price: int = Field(..., description="Minor units (cents, lovelace)")
    full_price: int | None = None
    duration_seconds: int | None = Field(None, description="Subscription length; omit or 0 for none")
    currency: str = Field("USD", min_length=3, max_length=8)


class EditListingRequest(BaseModel):
    price: int
    full_price: int | None = None
    duration_seconds: int | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ListingResponse(BaseModel):
    id: str
    seller_id: str
    agent_id: str | None
    price: int
    price_display: str
    full_price: int | None
    duration_seconds: int | None
    currency: str
    terms_hash: str
    state: str
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, listing: Listing) -> "ListingResponse":
        return cls(
            id=listing.id,
            seller_id=listing.seller_id,
            agent_id=listing.agent_id,
            price=listing.price,
            price_display=minor_to_display(listing.price, listing.currency),
            full_price=listing.full_price,
            duration_seconds=listing.duration_seconds,
            currency=listing.currency,
            terms_hash=listing.terms_hash,
            state=listing.state,
            created_at=listing.created_at.isoformat(),
            updated_at=listing.updated_at.isoformat(),
        )


class ListingListResponse(BaseModel):
    items: list[ListingResponse]
    next_cursor: str | None
    has_more: bool
