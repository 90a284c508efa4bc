"""seed monthly ranking vouchers

Revision ID: 0002_seed_rank_rewards
Revises: 0001_loyalty_schema
Create Date: 2026-10-19 10:30:00
"""

from typing import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002_seed_rank_rewards"
down_revision: str | None = "0001_loyalty_schema"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.execute(
        sa.text(
            """
            INSERT INTO rewards (id, name, description, category, points_required, is_active, rank)
            VALUES
                ('voucher-1000k', 'Voucher 1.000.000 VND', 'Prize for the top creator of the month',
                 'MONTHLY_RANK', 0, true, 1),
                ('voucher-500k', 'Voucher 500.000 VND', 'Prize for the runner-up creator of the month',
                 'MONTHLY_RANK', 0, true, 2)
            ON CONFLICT (id) DO NOTHING
            """
        )
    )


def downgrade() -> None:
    op.execute(sa.text("DELETE FROM rewards WHERE id IN ('voucher-1000k', 'voucher-500k')"))
