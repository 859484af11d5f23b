"""ListingRepository: concrete implementation of ListingRepositoryProtocol.

All queries use raw text() SQL (no ORM).
asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.

Transaction ownership: the CALLER starts and commits the transaction.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.enums import PurchaseKind, PurchaseStatus
from src.am_common.errors import ListingNotFoundError
from src.am_listing.domain.models import Listing

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_COLUMNS = """
    id, seller_id, agent_id, price, full_price, duration_seconds,
    currency, terms_hash, state, created_at, updated_at
"""

_INSERT_SQL = text(f"""
    INSERT INTO listings
        (id, seller_id, agent_id, price, full_price, duration_seconds,
         currency, terms_hash, state)
    VALUES
        (:id, :seller_id, :agent_id, :price, :full_price, :duration_seconds,
         :currency, :terms_hash, :state)
    RETURNING {_COLUMNS}
""")

_GET_SQL = text(f"SELECT {_COLUMNS} FROM listings WHERE id = :listing_id")

_GET_FOR_UPDATE_SQL = text(f"SELECT {_COLUMNS} FROM listings WHERE id = :listing_id FOR UPDATE")

_UPDATE_TERMS_SQL = text(f"""
    UPDATE listings
    SET price = :price,
        full_price = :full_price,
        duration_seconds = :duration_seconds,
        terms_hash = :terms_hash,
        updated_at = NOW()
    WHERE id = :listing_id
    RETURNING {_COLUMNS}
""")

_SET_STATE_SQL = text(f"""
    UPDATE listings
    SET state = :state, updated_at = NOW()
    WHERE id = :listing_id
    RETURNING {_COLUMNS}
""")

_HAS_VERIFIED_FULL_TRANSFER_SQL = text("""
    SELECT EXISTS (
        SELECT 1 FROM purchase_intents
        WHERE listing_id = :listing_id
          AND kind = :kind
          AND status = :status
    )
""")

_LIST_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM listings
    WHERE
        (CAST(:state AS TEXT) IS NULL OR state = CAST(:state AS TEXT))
        AND (CAST(:seller_id AS TEXT) IS NULL OR seller_id = CAST(:seller_id AS TEXT))
        AND (
            CAST(:cursor_ts AS TIMESTAMPTZ) IS NULL
            OR created_at < CAST(:cursor_ts AS TIMESTAMPTZ)
            OR (
                created_at = CAST(:cursor_ts AS TIMESTAMPTZ)
                AND id < CAST(:cursor_id AS TEXT)
            )
        )
    ORDER BY created_at DESC, id DESC
    LIMIT :limit
""")

_COUNT_BY_STATE_SQL = text("SELECT state, COUNT(*) AS n FROM listings GROUP BY state")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_listing(row: object) -> Listing:
    return Listing(
        id=row.id,  # type: ignore[attr-defined]
        seller_id=row.seller_id,  # type: ignore[attr-defined]
        agent_id=row.agent_id,  # type: ignore[attr-defined]
        price=row.price,  # type: ignore[attr-defined]
        full_price=row.full_price,  # type: ignore[attr-defined]
        duration_seconds=row.duration_seconds,  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        terms_hash=row.terms_hash,  # type: ignore[attr-defined]
        state=row.state,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ListingRepository:
    async def insert(self, db: AsyncSession, listing: Listing) -> Listing:
        result = await db.execute(
            _INSERT_SQL,
            {
                "id": listing.id,
                "seller_id": listing.seller_id,
                "agent_id": listing.agent_id,
                "price": listing.price,
                "full_price": listing.full_price,
                "duration_seconds": listing.duration_seconds,
                "currency": listing.currency,
                "terms_hash": listing.terms_hash,
                "state": listing.state,
            },
        )
        return _row_to_listing(result.fetchone())

    async def get_by_id(
        self, db: AsyncSession, listing_id: str, *, for_update: bool = False
    ) -> Listing | None:
        sql = _GET_FOR_UPDATE_SQL if for_update else _GET_SQL
        result = await db.execute(sql, {"listing_id": listing_id})
        row = result.fetchone()
        return _row_to_listing(row) if row is not None else None

    async def update_terms(
        self,
        db: AsyncSession,
        listing_id: str,
        price: int,
        full_price: int | None,
        duration_seconds: int | None,
        terms_hash: str,
    ) -> Listing:
        result = await db.execute(
            _UPDATE_TERMS_SQL,
            {
                "listing_id": listing_id,
                "price": price,
                "full_price": full_price,
                "duration_seconds": duration_seconds,
                "terms_hash": terms_hash,
            },
        )
        row = result.fetchone()
        if row is None:
            raise ListingNotFoundError(listing_id)
        return _row_to_listing(row)

    async def set_state(self, db: AsyncSession, listing_id: str, state: str) -> Listing:
        result = await db.execute(_SET_STATE_SQL, {"listing_id": listing_id, "state": state})
        row = result.fetchone()
        if row is None:
            raise ListingNotFoundError(listing_id)
        return _row_to_listing(row)

    async def has_verified_full_transfer(self, db: AsyncSession, listing_id: str) -> bool:
        result = await db.execute(
            _HAS_VERIFIED_FULL_TRANSFER_SQL,
            {
                "listing_id": listing_id,
                "kind": PurchaseKind.FULL_TRANSFER.value,
                "status": PurchaseStatus.VERIFIED.value,
            },
        )
        return bool(result.scalar())

    async def list_listings(
        self,
        db: AsyncSession,
        state: str | None,
        seller_id: str | None,
        cursor_ts: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[Listing]:
        result = await db.execute(
            _LIST_SQL,
            {
                "state": state,
                "seller_id": seller_id,
                "cursor_ts": cursor_ts,
                "cursor_id": cursor_id,
                "limit": limit,
            },
        )
        return [_row_to_listing(r) for r in result.fetchall()]

    async def count_by_state(self, db: AsyncSession) -> dict[str, int]:
        result = await db.execute(_COUNT_BY_STATE_SQL)
        return {row.state: int(row.n) for row in result.fetchall()}
