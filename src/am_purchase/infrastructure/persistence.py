"""PurchaseIntentRepository: raw-SQL implementation of PurchaseIntentRepositoryProtocol.

asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.
Transaction ownership: the CALLER starts and commits the transaction.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.enums import PurchaseStatus
from src.am_common.errors import DuplicatePaymentReferenceError, PurchaseIntentNotFoundError
from src.am_purchase.domain.models import PurchaseIntent

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_COLUMNS = """
    id, listing_id, buyer_id, kind, rail, declared_amount, currency,
    payment_reference, terms_hash, duration_seconds, payer_address, credit_points,
    payment_link, status, attempts, last_error, observed_at, verified_at, reject_reason,
    created_at, updated_at
"""

_INSERT_SQL = text(f"""
    INSERT INTO purchase_intents
        (id, listing_id, buyer_id, kind, rail, declared_amount, currency,
         payment_reference, terms_hash, duration_seconds, payer_address, credit_points,
         payment_link, status)
    VALUES
        (:id, :listing_id, :buyer_id, :kind, :rail, :declared_amount, :currency,
         :payment_reference, :terms_hash, :duration_seconds, :payer_address, :credit_points,
         :payment_link, :status)
    RETURNING {_COLUMNS}
""")

_GET_SQL = text(f"SELECT {_COLUMNS} FROM purchase_intents WHERE id = :intent_id")
_GET_FOR_UPDATE_SQL = text(
    f"SELECT {_COLUMNS} FROM purchase_intents WHERE id = :intent_id FOR UPDATE"
)
_GET_BY_REF_SQL = text(
    f"SELECT {_COLUMNS} FROM purchase_intents WHERE payment_reference = :reference"
)
_GET_BY_REF_FOR_UPDATE_SQL = text(
    f"SELECT {_COLUMNS} FROM purchase_intents WHERE payment_reference = :reference FOR UPDATE"
)

_SET_STATUS_SQL = text(f"""
    UPDATE purchase_intents
    SET status = :status,
        verified_at = COALESCE(CAST(:verified_at AS TIMESTAMPTZ), verified_at),
        reject_reason = COALESCE(CAST(:reject_reason AS TEXT), reject_reason),
        updated_at = NOW()
    WHERE id = :intent_id
    RETURNING {_COLUMNS}
""")

_RECORD_ATTEMPT_SQL = text(f"""
    UPDATE purchase_intents
    SET attempts = attempts + 1,
        last_error = :error,
        observed_at = COALESCE(observed_at, CAST(:observed_at AS TIMESTAMPTZ)),
        updated_at = NOW()
    WHERE id = :intent_id
    RETURNING {_COLUMNS}
""")

_LIST_BY_BUYER_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM purchase_intents
    WHERE buyer_id = :buyer_id
      AND (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
      AND (CAST(:cursor_id AS TEXT) IS NULL OR id < CAST(:cursor_id AS TEXT))
    ORDER BY id DESC
    LIMIT :limit
""")

_LIST_PENDING_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM purchase_intents
    WHERE status = :status AND rail = :rail AND attempts < :max_attempts
    ORDER BY updated_at ASC, id ASC
    LIMIT :limit
""")

_COUNT_BY_STATUS_SQL = text(
    "SELECT status, COUNT(*) AS n FROM purchase_intents GROUP BY status"
)

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_intent(row: object) -> PurchaseIntent:
    return PurchaseIntent(
        id=row.id,  # type: ignore[attr-defined]
        listing_id=row.listing_id,  # type: ignore[attr-defined]
        buyer_id=row.buyer_id,  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        rail=row.rail,  # type: ignore[attr-defined]
        declared_amount=row.declared_amount,  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        payment_reference=row.payment_reference,  # type: ignore[attr-defined]
        terms_hash=row.terms_hash,  # type: ignore[attr-defined]
        duration_seconds=row.duration_seconds,  # type: ignore[attr-defined]
        payer_address=row.payer_address,  # type: ignore[attr-defined]
        credit_points=row.credit_points,  # type: ignore[attr-defined]
        payment_link=row.payment_link,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        attempts=row.attempts,  # type: ignore[attr-defined]
        last_error=row.last_error,  # type: ignore[attr-defined]
        observed_at=row.observed_at,  # type: ignore[attr-defined]
        verified_at=row.verified_at,  # type: ignore[attr-defined]
        reject_reason=row.reject_reason,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PurchaseIntentRepository:
    async def insert(self, db: AsyncSession, intent: PurchaseIntent) -> PurchaseIntent:
        try:
            result = await db.execute(
                _INSERT_SQL,
                {
                    "id": intent.id,
                    "listing_id": intent.listing_id,
                    "buyer_id": intent.buyer_id,
                    "kind": intent.kind,
                    "rail": intent.rail,
                    "declared_amount": intent.declared_amount,
                    "currency": intent.currency,
                    "payment_reference": intent.payment_reference,
                    "terms_hash": intent.terms_hash,
                    "duration_seconds": intent.duration_seconds,
                    "payer_address": intent.payer_address,
                    "credit_points": intent.credit_points,
                    "payment_link": intent.payment_link,
                    "status": intent.status,
                },
            )
        except IntegrityError as exc:
            if "payment_reference" in str(exc.orig):
                raise DuplicatePaymentReferenceError(intent.payment_reference) from exc
            raise
        return _row_to_intent(result.fetchone())

    async def get_by_id(
        self, db: AsyncSession, intent_id: str, *, for_update: bool = False
    ) -> PurchaseIntent | None:
        sql = _GET_FOR_UPDATE_SQL if for_update else _GET_SQL
        row = (await db.execute(sql, {"intent_id": intent_id})).fetchone()
        return _row_to_intent(row) if row is not None else None

    async def get_by_reference(
        self, db: AsyncSession, reference: str, *, for_update: bool = False
    ) -> PurchaseIntent | None:
        sql = _GET_BY_REF_FOR_UPDATE_SQL if for_update else _GET_BY_REF_SQL
        row = (await db.execute(sql, {"reference": reference})).fetchone()
        return _row_to_intent(row) if row is not None else None

    async def set_status(
        self,
        db: AsyncSession,
        intent_id: str,
        status: str,
        *,
        verified_at: datetime | None = None,
        reject_reason: str | None = None,
    ) -> PurchaseIntent:
        row = (
            await db.execute(
                _SET_STATUS_SQL,
                {
                    "intent_id": intent_id,
                    "status": status,
                    "verified_at": verified_at,
                    "reject_reason": reject_reason,
                },
            )
        ).fetchone()
        if row is None:
            raise PurchaseIntentNotFoundError(intent_id)
        return _row_to_intent(row)

    async def record_attempt(
        self,
        db: AsyncSession,
        intent_id: str,
        error: str,
        observed_at: datetime | None,
    ) -> PurchaseIntent:
        row = (
            await db.execute(
                _RECORD_ATTEMPT_SQL,
                {"intent_id": intent_id, "error": error, "observed_at": observed_at},
            )
        ).fetchone()
        if row is None:
            raise PurchaseIntentNotFoundError(intent_id)
        return _row_to_intent(row)

    async def list_by_buyer(
        self,
        db: AsyncSession,
        buyer_id: str,
        status: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[PurchaseIntent]:
        result = await db.execute(
            _LIST_BY_BUYER_SQL,
            {"buyer_id": buyer_id, "status": status, "cursor_id": cursor_id, "limit": limit},
        )
        return [_row_to_intent(r) for r in result.fetchall()]

    async def list_pending(
        self, db: AsyncSession, rail: str, max_attempts: int, limit: int
    ) -> list[PurchaseIntent]:
        result = await db.execute(
            _LIST_PENDING_SQL,
            {
                "status": PurchaseStatus.PENDING.value,
                "rail": rail,
                "max_attempts": max_attempts,
                "limit": limit,
            },
        )
        return [_row_to_intent(r) for r in result.fetchall()]

    async def count_by_status(self, db: AsyncSession) -> dict[str, int]:
        result = await db.execute(_COUNT_BY_STATUS_SQL)
        return {row.status: int(row.n) for row in result.fetchall()}
