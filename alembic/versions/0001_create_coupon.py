"""create coupon table

Revision ID: 0001
Revises:
Create Date: 2024-03-02
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    usage_type = sa.Enum("one_time", "multi_use", "time_based", name="couponusagetype", native_enum=False)
    discount_type = sa.Enum("flat", "percentage", name="coupondiscounttype", native_enum=False)

    op.create_table(
        "coupon",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("usage_type", usage_type, nullable=False),
        sa.Column("min_order_value", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("discount_type", discount_type, nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("max_usage_per_user", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("terms_and_conditions", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("valid_until > valid_from", name="ck_coupon_valid_window"),
        sa.CheckConstraint("discount_value > 0", name="ck_coupon_discount_value_positive"),
        sa.CheckConstraint("max_usage_per_user > 0", name="ck_coupon_max_usage_positive"),
    )
    op.create_index(op.f("ix_coupon_code"), "coupon", ["code"], unique=True)


def downgrade() -> None:
    op.drop_index(op.f("ix_coupon_code"), table_name="coupon")
    op.drop_table("coupon")
