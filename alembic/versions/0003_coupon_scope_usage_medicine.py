"""coupon scope maps, per-user usage and medicine catalog

Revision ID: 0003
Revises: 0002
Create Date: 2024-03-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0003"
down_revision: str | None = "0002"
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "medicine",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
    )
    op.create_index(op.f("ix_medicine_category"), "medicine", ["category"], unique=False)

    op.create_table(
        "coupon_medicine_map",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "coupon_code", sa.String(length=50), sa.ForeignKey("coupon.code", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("medicine_id", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("coupon_code", "medicine_id", name="uq_coupon_medicine_map_code_medicine"),
    )
    op.create_index(op.f("ix_coupon_medicine_map_coupon_code"), "coupon_medicine_map", ["coupon_code"], unique=False)
    op.create_index(op.f("ix_coupon_medicine_map_medicine_id"), "coupon_medicine_map", ["medicine_id"], unique=False)

    op.create_table(
        "coupon_category_map",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "coupon_code", sa.String(length=50), sa.ForeignKey("coupon.code", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("category_name", sa.String(length=120), nullable=False),
        sa.UniqueConstraint("coupon_code", "category_name", name="uq_coupon_category_map_code_category"),
    )
    op.create_index(op.f("ix_coupon_category_map_coupon_code"), "coupon_category_map", ["coupon_code"], unique=False)
    op.create_index(
        op.f("ix_coupon_category_map_category_name"), "coupon_category_map", ["category_name"], unique=False
    )

    op.create_table(
        "coupon_usage",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("coupon_code", sa.String(length=50), sa.ForeignKey("coupon.code"), nullable=False),
        sa.Column("usage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "coupon_code", name="uq_coupon_usage_user_code"),
        sa.CheckConstraint("usage >= 0", name="ck_coupon_usage_non_negative"),
    )
    op.create_index(op.f("ix_coupon_usage_coupon_code"), "coupon_usage", ["coupon_code"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_coupon_usage_coupon_code"), table_name="coupon_usage")
    op.drop_table("coupon_usage")
    op.drop_index(op.f("ix_coupon_category_map_category_name"), table_name="coupon_category_map")
    op.drop_index(op.f("ix_coupon_category_map_coupon_code"), table_name="coupon_category_map")
    op.drop_table("coupon_category_map")
    op.drop_index(op.f("ix_coupon_medicine_map_medicine_id"), table_name="coupon_medicine_map")
    op.drop_index(op.f("ix_coupon_medicine_map_coupon_code"), table_name="coupon_medicine_map")
    op.drop_table("coupon_medicine_map")
    op.drop_index(op.f("ix_medicine_category"), table_name="medicine")
    op.drop_table("medicine")
