"""FeeLedgerRepository: append-only fee_ledger_entries, raw SQL.

No UPDATE or DELETE statements exist for this table; balances are always
derived by summing rows.
"""

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.enums import PurchaseStatus
from src.am_common.errors import DuplicateGrantError
from src.am_fees.domain.fee import FeeLedgerEntry, FeeTotals

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_COLUMNS = """
    id, purchase_intent_id, kind, currency, gross_amount, fee_bps,
    listing_fee_amount, marketplace_cut_amount, settled_at
"""

_INSERT_SQL = text(f"""
    INSERT INTO fee_ledger_entries
        (id, purchase_intent_id, kind, currency, gross_amount, fee_bps,
         listing_fee_amount, marketplace_cut_amount, settled_at)
    VALUES
        (:id, :purchase_intent_id, :kind, :currency, :gross_amount, :fee_bps,
         :listing_fee_amount, :marketplace_cut_amount, :settled_at)
    RETURNING {_COLUMNS}
""")

_TOTALS_SQL = text("""
    SELECT currency,
           COALESCE(SUM(listing_fee_amount), 0) AS listing_fees,
           COALESCE(SUM(marketplace_cut_amount), 0) AS marketplace_cuts,
           COUNT(*) AS entries
    FROM fee_ledger_entries
    GROUP BY currency
""")

_LIST_ALL_SQL = text(f"SELECT {_COLUMNS} FROM fee_ledger_entries ORDER BY id")

_LIST_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM fee_ledger_entries
    WHERE CAST(:cursor_id AS TEXT) IS NULL OR id < CAST(:cursor_id AS TEXT)
    ORDER BY id DESC
    LIMIT :limit
""")

_VERIFIED_WITHOUT_ENTRY_SQL = text("""
    SELECT p.id
    FROM purchase_intents p
    LEFT JOIN fee_ledger_entries f ON f.purchase_intent_id = p.id
    WHERE p.status = :verified AND f.id IS NULL
""")

_ENTRY_WITHOUT_VERIFIED_SQL = text("""
    SELECT f.purchase_intent_id
    FROM fee_ledger_entries f
    JOIN purchase_intents p ON p.id = f.purchase_intent_id
    WHERE p.status <> :verified
""")

_GROSS_MISMATCH_SQL = text("""
    SELECT f.purchase_intent_id, f.gross_amount, p.declared_amount
    FROM fee_ledger_entries f
    JOIN purchase_intents p ON p.id = f.purchase_intent_id
    WHERE f.gross_amount <> p.declared_amount OR f.currency <> p.currency
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_entry(row: object) -> FeeLedgerEntry:
    return FeeLedgerEntry(
        id=row.id,  # type: ignore[attr-defined]
        purchase_intent_id=row.purchase_intent_id,  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        gross_amount=row.gross_amount,  # type: ignore[attr-defined]
        fee_bps=row.fee_bps,  # type: ignore[attr-defined]
        listing_fee_amount=row.listing_fee_amount,  # type: ignore[attr-defined]
        marketplace_cut_amount=row.marketplace_cut_amount,  # type: ignore[attr-defined]
        settled_at=row.settled_at,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class FeeLedgerRepository:
    async def append(self, db: AsyncSession, entry: FeeLedgerEntry) -> FeeLedgerEntry:
        try:
            result = await db.execute(
                _INSERT_SQL,
                {
                    "id": entry.id,
                    "purchase_intent_id": entry.purchase_intent_id,
                    "kind": entry.kind,
                    "currency": entry.currency,
                    "gross_amount": entry.gross_amount,
                    "fee_bps": entry.fee_bps,
                    "listing_fee_amount": entry.listing_fee_amount,
                    "marketplace_cut_amount": entry.marketplace_cut_amount,
                    "settled_at": entry.settled_at,
                },
            )
        except IntegrityError as exc:
            if "purchase_intent_id" in str(exc.orig):
                raise DuplicateGrantError(entry.purchase_intent_id) from exc
            raise
        return _row_to_entry(result.fetchone())

    async def totals_by_currency(self, db: AsyncSession) -> dict[str, FeeTotals]:
        result = await db.execute(_TOTALS_SQL)
        return {
            row.currency: FeeTotals(
                currency=row.currency,
                listing_fees=int(row.listing_fees),
                marketplace_cuts=int(row.marketplace_cuts),
                entries=int(row.entries),
            )
            for row in result.fetchall()
        }

    async def list_all(self, db: AsyncSession) -> list[FeeLedgerEntry]:
        result = await db.execute(_LIST_ALL_SQL)
        return [_row_to_entry(r) for r in result.fetchall()]

    async def list_entries(
        self, db: AsyncSession, cursor_id: str | None, limit: int
    ) -> list[FeeLedgerEntry]:
        result = await db.execute(_LIST_SQL, {"cursor_id": cursor_id, "limit": limit})
        return [_row_to_entry(r) for r in result.fetchall()]

    async def find_unmatched(self, db: AsyncSession) -> list[str]:
        params = {"verified": PurchaseStatus.VERIFIED.value}
        violations: list[str] = []
        for row in (await db.execute(_VERIFIED_WITHOUT_ENTRY_SQL, params)).fetchall():
            violations.append(f"verified intent {row.id} has no fee entry")
        for row in (await db.execute(_ENTRY_WITHOUT_VERIFIED_SQL, params)).fetchall():
            violations.append(f"fee entry for {row.purchase_intent_id} has no verified intent")
        for row in (await db.execute(_GROSS_MISMATCH_SQL)).fetchall():
            violations.append(
                f"fee entry for {row.purchase_intent_id}: gross {row.gross_amount}"
                f" != declared {row.declared_amount}"
            )
        return violations
