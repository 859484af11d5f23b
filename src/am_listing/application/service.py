"""ListingRegistry: listing terms and lifecycle.

Lifecycle: ACTIVE -> DELISTED (seller) or ACTIVE -> SOLD (full-transfer settlement).
Terms are editable only while ACTIVE; every edit re-derives the terms hash that
on-chain purchases must reproduce.

create/edit/delist own their transaction (commit/rollback here).
mark_sold runs inside the reconciliation commit unit; the caller owns that
transaction.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.am_chain.domain.actions import terms_hash
from src.am_common.datetime_utils import utc_now
from src.am_common.enums import ListingState
from src.am_common.errors import (
    AlreadySettledError,
    ListingNotFoundError,
    NotEditableError,
    NotListingOwnerError,
)
from src.am_common.id_generator import generate_id
from src.am_entitlement.application.service import EntitlementLedger
from src.am_listing.application.schemas import (
    CreateListingRequest,
    EditListingRequest,
    ListingListResponse,
    ListingResponse,
    cursor_decode,
    cursor_encode,
)
from src.am_listing.domain.models import Listing, normalize_terms
from src.am_listing.domain.repository import ListingRepositoryProtocol
from src.am_listing.infrastructure.persistence import ListingRepository

logger = logging.getLogger(__name__)


class ListingRegistry:
    def __init__(
        self,
        repo: ListingRepositoryProtocol | None = None,
        entitlements: EntitlementLedger | None = None,
        credit_cost: int | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo: ListingRepositoryProtocol = repo or ListingRepository()
        self._entitlements = entitlements or EntitlementLedger()
        self._credit_cost = settings.LISTING_CREDIT_COST if credit_cost is None else credit_cost
        self._now = now

    # ------------------------------------------------------------------
    # Seller operations
    # ------------------------------------------------------------------

    async def create(
        self, db: AsyncSession, seller_id: str, req: CreateListingRequest
    ) -> Listing:
        """Publish new terms. Raises InvalidTermsError, InsufficientListingCreditError."""
        price, full_price, duration = normalize_terms(
            req.price, req.full_price, req.duration_seconds
        )
        now = self._now()
        listing = Listing(
            id=generate_id("lst"),
            seller_id=seller_id,
            agent_id=req.agent_id,
            price=price,
            full_price=full_price,
            duration_seconds=duration,
            currency=req.currency.upper(),
            terms_hash=terms_hash(price, full_price, duration, seller_id),
            state=ListingState.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        try:
            saved = await self._repo.insert(db, listing)
            if self._credit_cost > 0:
                await self._entitlements.redeem_credits(
                    db, seller_id, saved.id, self._credit_cost
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Listing %s created by %s", saved.id, seller_id)
        return saved

    async def edit(
        self, db: AsyncSession, seller_id: str, listing_id: str, req: EditListingRequest
    ) -> Listing:
        """Replace terms. Raises NotEditableError unless ACTIVE."""
        price, full_price, duration = normalize_terms(
            req.price, req.full_price, req.duration_seconds
        )
        try:
            listing = await self._get_owned(db, seller_id, listing_id, for_update=True)
            if not listing.is_active:
                raise NotEditableError(listing_id, listing.state)
            updated = await self._repo.update_terms(
                db,
                listing_id,
                price,
                full_price,
                duration,
                terms_hash(price, full_price, duration, listing.seller_id),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return updated

    async def delist(self, db: AsyncSession, seller_id: str, listing_id: str) -> Listing:
        """ACTIVE -> DELISTED. Raises AlreadySettledError after a verified full transfer."""
        try:
            listing = await self._get_owned(db, seller_id, listing_id, for_update=True)
            if listing.state == ListingState.SOLD or await self._repo.has_verified_full_transfer(
                db, listing_id
            ):
                raise AlreadySettledError(listing_id)
            if listing.state != ListingState.DELISTED:
                listing = await self._repo.set_state(db, listing_id, ListingState.DELISTED.value)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return listing

    # ------------------------------------------------------------------
    # Settlement-only transition
    # ------------------------------------------------------------------

    async def mark_sold(self, db: AsyncSession, listing_id: str) -> Listing:
        """Transition to SOLD after a full-transfer settlement; no-op if already SOLD."""
        listing = await self._repo.get_by_id(db, listing_id, for_update=True)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        if listing.state == ListingState.SOLD:
            return listing
        return await self._repo.set_state(db, listing_id, ListingState.SOLD.value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(
        self, db: AsyncSession, listing_id: str, *, for_update: bool = False
    ) -> Listing:
        listing = await self._repo.get_by_id(db, listing_id, for_update=for_update)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    async def list_listings(
        self,
        db: AsyncSession,
        state: str | None,
        seller_id: str | None,
        cursor: str | None,
        limit: int,
    ) -> ListingListResponse:
        # state=None -> default ACTIVE; state='ALL' -> no filter
        sql_state = None if state == "ALL" else (state or ListingState.ACTIVE.value)
        cursor_ts, cursor_id = cursor_decode(cursor)

        # Fetch limit+1 to detect has_more without COUNT(*)
        listings = await self._repo.list_listings(
            db, sql_state, seller_id, cursor_ts, cursor_id, limit + 1
        )
        has_more = len(listings) > limit
        page = listings[:limit]
        return ListingListResponse(
            items=[ListingResponse.from_domain(item) for item in page],
            next_cursor=cursor_encode(page[-1]) if has_more and page else None,
            has_more=has_more,
        )

    async def count_by_state(self, db: AsyncSession) -> dict[str, int]:
        return await self._repo.count_by_state(db)

    async def _get_owned(
        self, db: AsyncSession, seller_id: str, listing_id: str, *, for_update: bool
    ) -> Listing:
        listing = await self.get(db, listing_id, for_update=for_update)
        if listing.seller_id != seller_id:
            raise NotListingOwnerError(listing_id)
        return listing
