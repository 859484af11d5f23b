"""006: create settlement_alerts

Revision ID: 006
Revises: 005
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE settlement_alerts (
            id                  VARCHAR(64)     PRIMARY KEY,
            kind                VARCHAR(40)     NOT NULL,
            payment_reference   VARCHAR(128),
            purchase_intent_id  VARCHAR(64),
            detail              TEXT            NOT NULL,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_settlement_alerts_kind CHECK (
                kind IN (
                    'RETRY_BUDGET_EXHAUSTED', 'ATOMIC_COMMIT_FAILURE',
                    'DUPLICATE_GRANT', 'REFUND_REQUIRED', 'FEE_DRIFT'
                )
            )
        );
    """)
    op.execute("CREATE INDEX idx_settlement_alerts_time ON settlement_alerts (created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_settlement_alerts_append_only
            BEFORE UPDATE OR DELETE ON settlement_alerts
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS settlement_alerts CASCADE;")
