"""add coupon discount target

Revision ID: 0002
Revises: 0001
Create Date: 2024-03-09
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    # Existing coupons keep discounting item prices only.
    op.add_column(
        "coupon",
        sa.Column("discount_target", sa.String(length=32), nullable=False, server_default="inventory"),
    )


def downgrade() -> None:
    op.drop_column("coupon", "discount_target")
