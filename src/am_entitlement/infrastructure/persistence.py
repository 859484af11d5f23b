"""EntitlementRepository: raw-SQL implementation of EntitlementRepositoryProtocol.

UNIQUE(granted_from) on entitlements is the at-most-once guard: a second grant
for the same purchase intent fails inside the database, not in Python.

Transaction ownership: the CALLER starts and commits the transaction.
"""

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_common.enums import EntitlementKind
from src.am_common.errors import DuplicateGrantError
from src.am_entitlement.domain.models import CreditRedemption, Entitlement

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_COLUMNS = """
    id, user_id, subject_id, kind, granted_from, expires_at, credit_points, created_at
"""

_INSERT_SQL = text(f"""
    INSERT INTO entitlements
        (id, user_id, subject_id, kind, granted_from, expires_at, credit_points)
    VALUES
        (:id, :user_id, :subject_id, :kind, :granted_from, :expires_at, :credit_points)
    RETURNING {_COLUMNS}
""")

_GET_BY_GRANTED_FROM_SQL = text(
    f"SELECT {_COLUMNS} FROM entitlements WHERE granted_from = :granted_from"
)

_LIST_FOR_SUBJECT_SQL = text(f"""
    SELECT {_COLUMNS} FROM entitlements
    WHERE user_id = :user_id AND subject_id = :subject_id
    ORDER BY created_at DESC, id DESC
""")

_LIST_BY_USER_SQL = text(f"""
    SELECT {_COLUMNS} FROM entitlements
    WHERE user_id = :user_id
      AND (CAST(:cursor_id AS TEXT) IS NULL OR id < CAST(:cursor_id AS TEXT))
    ORDER BY id DESC
    LIMIT :limit
""")

# Serialises credit spending per user for the rest of the transaction
_LOCK_CREDIT_ACCOUNT_SQL = text("SELECT pg_advisory_xact_lock(hashtext(:user_id))")

_CREDIT_BALANCE_SQL = text("""
    SELECT
        COALESCE((SELECT SUM(credit_points) FROM entitlements
                  WHERE user_id = :user_id AND kind = :kind), 0)
      - COALESCE((SELECT SUM(points) FROM credit_redemptions
                  WHERE user_id = :user_id), 0)
""")

_INSERT_REDEMPTION_SQL = text("""
    INSERT INTO credit_redemptions (id, user_id, listing_id, points)
    VALUES (:id, :user_id, :listing_id, :points)
    RETURNING id, user_id, listing_id, points, created_at
""")

_COUNT_SQL = text("SELECT COUNT(*) FROM entitlements")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_entitlement(row: object) -> Entitlement:
    return Entitlement(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        subject_id=row.subject_id,  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        granted_from=row.granted_from,  # type: ignore[attr-defined]
        expires_at=row.expires_at,  # type: ignore[attr-defined]
        credit_points=row.credit_points,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def _row_to_redemption(row: object) -> CreditRedemption:
    return CreditRedemption(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        listing_id=row.listing_id,  # type: ignore[attr-defined]
        points=row.points,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class EntitlementRepository:
    async def insert(self, db: AsyncSession, entitlement: Entitlement) -> Entitlement:
        try:
            result = await db.execute(
                _INSERT_SQL,
                {
                    "id": entitlement.id,
                    "user_id": entitlement.user_id,
                    "subject_id": entitlement.subject_id,
                    "kind": entitlement.kind,
                    "granted_from": entitlement.granted_from,
                    "expires_at": entitlement.expires_at,
                    "credit_points": entitlement.credit_points,
                },
            )
        except IntegrityError as exc:
            if "granted_from" in str(exc.orig):
                raise DuplicateGrantError(entitlement.granted_from) from exc
            raise
        return _row_to_entitlement(result.fetchone())

    async def get_by_granted_from(
        self, db: AsyncSession, purchase_intent_id: str
    ) -> Entitlement | None:
        result = await db.execute(_GET_BY_GRANTED_FROM_SQL, {"granted_from": purchase_intent_id})
        row = result.fetchone()
        return _row_to_entitlement(row) if row is not None else None

    async def list_for_subject(
        self, db: AsyncSession, user_id: str, subject_id: str
    ) -> list[Entitlement]:
        result = await db.execute(
            _LIST_FOR_SUBJECT_SQL, {"user_id": user_id, "subject_id": subject_id}
        )
        return [_row_to_entitlement(r) for r in result.fetchall()]

    async def list_by_user(
        self, db: AsyncSession, user_id: str, cursor_id: str | None, limit: int
    ) -> list[Entitlement]:
        result = await db.execute(
            _LIST_BY_USER_SQL, {"user_id": user_id, "cursor_id": cursor_id, "limit": limit}
        )
        return [_row_to_entitlement(r) for r in result.fetchall()]

    async def lock_credit_account(self, db: AsyncSession, user_id: str) -> None:
        await db.execute(_LOCK_CREDIT_ACCOUNT_SQL, {"user_id": user_id})

    async def credit_balance(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            _CREDIT_BALANCE_SQL, {"user_id": user_id, "kind": EntitlementKind.CREDIT.value}
        )
        return int(result.scalar() or 0)

    async def insert_redemption(
        self, db: AsyncSession, redemption: CreditRedemption
    ) -> CreditRedemption:
        result = await db.execute(
            _INSERT_REDEMPTION_SQL,
            {
                "id": redemption.id,
                "user_id": redemption.user_id,
                "listing_id": redemption.listing_id,
                "points": redemption.points,
            },
        )
        return _row_to_redemption(result.fetchone())

    async def count(self, db: AsyncSession) -> int:
        result = await db.execute(_COUNT_SQL)
        return int(result.scalar() or 0)
