"""004: create entitlements and credit_redemptions

Revision ID: 004
Revises: 003
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE entitlements (
            id              VARCHAR(64)     PRIMARY KEY,
            user_id         VARCHAR(64)     NOT NULL,
            subject_id      VARCHAR(64)     NOT NULL,
            kind            VARCHAR(20)     NOT NULL,
            granted_from    VARCHAR(64)     NOT NULL REFERENCES purchase_intents (id),
            expires_at      TIMESTAMPTZ,
            credit_points   INT,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_entitlements_granted_from UNIQUE (granted_from),
            CONSTRAINT ck_entitlements_kind CHECK (kind IN ('OWNED', 'SUBSCRIPTION', 'CREDIT')),
            CONSTRAINT ck_entitlements_shape CHECK (
                (kind = 'OWNED' AND expires_at IS NULL AND credit_points IS NULL)
                OR (kind = 'SUBSCRIPTION' AND expires_at IS NOT NULL AND credit_points IS NULL)
                OR (kind = 'CREDIT' AND expires_at IS NULL AND credit_points > 0)
            )
        );
    """)
    op.execute("CREATE INDEX idx_entitlements_user_subject ON entitlements (user_id, subject_id);")
    op.execute("""
        CREATE TABLE credit_redemptions (
            id              VARCHAR(64)     PRIMARY KEY,
            user_id         VARCHAR(64)     NOT NULL,
            listing_id      VARCHAR(64)     NOT NULL REFERENCES listings (id),
            points          INT             NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_credit_redemptions_listing UNIQUE (listing_id),
            CONSTRAINT ck_credit_redemptions_points_gt_0 CHECK (points > 0)
        );
    """)
    op.execute("CREATE INDEX idx_credit_redemptions_user ON credit_redemptions (user_id);")
    op.execute(
        "COMMENT ON TABLE entitlements IS "
        "'Access grants; each justified by exactly one VERIFIED purchase intent';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credit_redemptions CASCADE;")
    op.execute("DROP TABLE IF EXISTS entitlements CASCADE;")
