"""005: create fee_ledger_entries

Revision ID: 005
Revises: 004
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE fee_ledger_entries (
            id                      VARCHAR(64)     PRIMARY KEY,
            purchase_intent_id      VARCHAR(64)     NOT NULL REFERENCES purchase_intents (id),
            kind                    VARCHAR(20)     NOT NULL,
            currency                VARCHAR(8)      NOT NULL,
            gross_amount            BIGINT          NOT NULL,
            fee_bps                 INT             NOT NULL,
            listing_fee_amount      BIGINT          NOT NULL,
            marketplace_cut_amount  BIGINT          NOT NULL,
            settled_at              TIMESTAMPTZ     NOT NULL,
            CONSTRAINT uq_fee_ledger_entries_purchase_intent_id UNIQUE (purchase_intent_id),
            CONSTRAINT ck_fee_ledger_amounts_gte_0 CHECK (
                gross_amount > 0 AND listing_fee_amount >= 0 AND marketplace_cut_amount >= 0
            ),
            CONSTRAINT ck_fee_ledger_fee_bps CHECK (fee_bps >= 0 AND fee_bps <= 10000)
        );
    """)
    op.execute("CREATE INDEX idx_fee_ledger_currency ON fee_ledger_entries (currency);")
    op.execute("""
        CREATE TRIGGER trg_fee_ledger_entries_append_only
            BEFORE UPDATE OR DELETE ON fee_ledger_entries
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)
    op.execute(
        "COMMENT ON TABLE fee_ledger_entries IS "
        "'Append-only; one entry per VERIFIED purchase intent, amounts in minor units';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS fee_ledger_entries CASCADE;")
