"""AlertRepository: append-only settlement_alerts, raw SQL."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.am_settlement.domain.models import SettlementAlert

_INSERT_SQL = text("""
    INSERT INTO settlement_alerts
        (id, kind, payment_reference, purchase_intent_id, detail, created_at)
    VALUES
        (:id, :kind, :payment_reference, :purchase_intent_id, :detail, :created_at)
    RETURNING id, kind, payment_reference, purchase_intent_id, detail, created_at
""")

_LIST_SQL = text("""
    SELECT id, kind, payment_reference, purchase_intent_id, detail, created_at
    FROM settlement_alerts
    WHERE CAST(:kind AS TEXT) IS NULL OR kind = CAST(:kind AS TEXT)
    ORDER BY created_at DESC, id DESC
    LIMIT :limit
""")


def _row_to_alert(row: object) -> SettlementAlert:
    return SettlementAlert(
        id=row.id,  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        payment_reference=row.payment_reference,  # type: ignore[attr-defined]
        purchase_intent_id=row.purchase_intent_id,  # type: ignore[attr-defined]
        detail=row.detail,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class AlertRepository:
    async def insert(self, db: AsyncSession, alert: SettlementAlert) -> SettlementAlert:
        result = await db.execute(
            _INSERT_SQL,
            {
                "id": alert.id,
                "kind": alert.kind,
                "payment_reference": alert.payment_reference,
                "purchase_intent_id": alert.purchase_intent_id,
                "detail": alert.detail,
                "created_at": alert.created_at,
            },
        )
        return _row_to_alert(result.fetchone())

    async def list_recent(
        self, db: AsyncSession, kind: str | None, limit: int
    ) -> list[SettlementAlert]:
        result = await db.execute(_LIST_SQL, {"kind": kind, "limit": limit})
        return [_row_to_alert(r) for r in result.fetchall()]
