"""003: create purchase_intents

Revision ID: 003
Revises: 002
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE purchase_intents (
            id                  VARCHAR(64)     PRIMARY KEY,
            listing_id          VARCHAR(64)     REFERENCES listings (id),
            buyer_id            VARCHAR(64)     NOT NULL,
            kind                VARCHAR(20)     NOT NULL,
            rail                VARCHAR(10)     NOT NULL,
            declared_amount     BIGINT          NOT NULL,
            currency            VARCHAR(8)      NOT NULL,
            payment_reference   VARCHAR(128)    NOT NULL,
            terms_hash          CHAR(64),
            duration_seconds    BIGINT,
            payer_address       VARCHAR(128),
            credit_points       INT,
            payment_link        TEXT,
            status              VARCHAR(20)     NOT NULL DEFAULT 'PENDING',
            attempts            INT             NOT NULL DEFAULT 0,
            last_error          TEXT,
            observed_at         TIMESTAMPTZ,
            verified_at         TIMESTAMPTZ,
            reject_reason       TEXT,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_purchase_intents_payment_reference UNIQUE (payment_reference),
            CONSTRAINT ck_purchase_intents_amount_gt_0 CHECK (declared_amount > 0),
            CONSTRAINT ck_purchase_intents_kind CHECK (
                kind IN ('FULL_TRANSFER', 'SUBSCRIPTION', 'LISTING_CREDIT')
            ),
            CONSTRAINT ck_purchase_intents_rail CHECK (rail IN ('CHAIN', 'GATEWAY')),
            CONSTRAINT ck_purchase_intents_status CHECK (
                status IN ('PENDING', 'VERIFIED', 'REJECTED', 'CANCELLED')
            ),
            CONSTRAINT ck_purchase_intents_listing CHECK (
                (kind = 'LISTING_CREDIT' AND listing_id IS NULL AND credit_points > 0)
                OR (kind <> 'LISTING_CREDIT' AND listing_id IS NOT NULL)
            ),
            CONSTRAINT ck_purchase_intents_verified_at CHECK (
                (status = 'VERIFIED') = (verified_at IS NOT NULL)
            )
        );
    """)
    op.execute("CREATE INDEX idx_purchase_intents_buyer ON purchase_intents (buyer_id, id DESC);")
    op.execute("""
        CREATE INDEX idx_purchase_intents_pending
        ON purchase_intents (rail, updated_at)
        WHERE status = 'PENDING';
    """)
    op.execute("CREATE INDEX idx_purchase_intents_listing ON purchase_intents (listing_id, kind, status);")
    op.execute("""
        CREATE TRIGGER trg_purchase_intents_updated_at
            BEFORE UPDATE ON purchase_intents
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute(
        "COMMENT ON TABLE purchase_intents IS "
        "'One row per declared payment; at most one VERIFIED per payment_reference';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS purchase_intents CASCADE;")
