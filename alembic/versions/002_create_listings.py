"""002: create listings

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE listings (
            id                  VARCHAR(64)     PRIMARY KEY,
            seller_id           VARCHAR(64)     NOT NULL,
            agent_id            VARCHAR(64),
            price               BIGINT          NOT NULL,
            full_price          BIGINT,
            duration_seconds    BIGINT,
            currency            VARCHAR(8)      NOT NULL,
            terms_hash          CHAR(64)        NOT NULL,
            state               VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_listings_price_gt_0       CHECK (price > 0),
            CONSTRAINT ck_listings_full_price       CHECK (full_price IS NULL OR full_price >= price),
            CONSTRAINT ck_listings_duration_gt_0    CHECK (duration_seconds IS NULL OR duration_seconds > 0),
            CONSTRAINT ck_listings_state CHECK (state IN ('ACTIVE', 'DELISTED', 'SOLD'))
        );
    """)
    op.execute("CREATE INDEX idx_listings_state_time ON listings (state, created_at DESC, id DESC);")
    op.execute("CREATE INDEX idx_listings_seller ON listings (seller_id);")
    op.execute("""
        CREATE TRIGGER trg_listings_updated_at
            BEFORE UPDATE ON listings
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE listings IS 'Seller terms mirrored on-chain; amounts in minor units';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS listings CASCADE;")
