# src/am_listing/domain/repository.py
"""Repository Protocol: dependency inversion for testability.

Unit tests inject an in-memory fake that conforms to this Protocol.
Infrastructure layer provides the raw-SQL implementation.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.am_listing.domain.models import Listing


class ListingRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, listing: Listing) -> Listing: ...

    async def get_by_id(
        self, db: AsyncSession, listing_id: str, *, for_update: bool = False
    ) -> Listing | None: ...

    async def update_terms(
        self,
        db: AsyncSession,
        listing_id: str,
        price: int,
        full_price: int | None,
        duration_seconds: int | None,
        terms_hash: str,
    ) -> Listing: ...

    async def set_state(self, db: AsyncSession, listing_id: str, state: str) -> Listing: ...

    async def has_verified_full_transfer(self, db: AsyncSession, listing_id: str) -> bool: ...

    async def list_listings(
        self,
        db: AsyncSession,
        state: str | None,
        seller_id: str | None,
        cursor_ts: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[Listing]: ...

    async def count_by_state(self, db: AsyncSession) -> dict[str, int]: ...
