import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medcoupons.db.base import Base


class CouponUsageType(str, enum.Enum):
    one_time = "one_time"
    multi_use = "multi_use"
    time_based = "time_based"


class CouponDiscountType(str, enum.Enum):
    flat = "flat"
    percentage = "percentage"


class CouponDiscountTarget(str, enum.Enum):
    inventory = "inventory"
    charges = "charges"
    inventory_and_charges = "inventory_and_charges"


class Coupon(Base):
    __tablename__ = "coupon"
    __table_args__ = (
        CheckConstraint("valid_until > valid_from", name="ck_coupon_valid_window"),
        CheckConstraint("discount_value > 0", name="ck_coupon_discount_value_positive"),
        CheckConstraint("max_usage_per_user > 0", name="ck_coupon_max_usage_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_type: Mapped[CouponUsageType] = mapped_column(
        Enum(CouponUsageType, native_enum=False),
        nullable=False,
        default=CouponUsageType.one_time,
    )
    min_order_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    discount_type: Mapped[CouponDiscountType] = mapped_column(
        Enum(CouponDiscountType, native_enum=False),
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    # Stored as plain text so rows written by older clients with an unknown target still load.
    discount_target: Mapped[str] = mapped_column(
        String(32), nullable=False, default=CouponDiscountTarget.inventory.value, server_default="inventory"
    )
    max_usage_per_user: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    terms_and_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    medicines: Mapped[list["CouponMedicine"]] = relationship(
        "CouponMedicine", back_populates="coupon", cascade="all, delete-orphan", lazy="selectin"
    )
    categories: Mapped[list["CouponCategory"]] = relationship(
        "CouponCategory", back_populates="coupon", cascade="all, delete-orphan", lazy="selectin"
    )


class CouponMedicine(Base):
    __tablename__ = "coupon_medicine_map"
    __table_args__ = (UniqueConstraint("coupon_code", "medicine_id", name="uq_coupon_medicine_map_code_medicine"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    coupon_code: Mapped[str] = mapped_column(
        String(50), ForeignKey("coupon.code", ondelete="CASCADE"), nullable=False, index=True
    )
    medicine_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="medicines")


class CouponCategory(Base):
    __tablename__ = "coupon_category_map"
    __table_args__ = (UniqueConstraint("coupon_code", "category_name", name="uq_coupon_category_map_code_category"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    coupon_code: Mapped[str] = mapped_column(
        String(50), ForeignKey("coupon.code", ondelete="CASCADE"), nullable=False, index=True
    )
    category_name: Mapped[str] = mapped_column(String(120), nullable=False, index=True)

    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="categories")


class CouponUsage(Base):
    __tablename__ = "coupon_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "coupon_code", name="uq_coupon_usage_user_code"),
        CheckConstraint("usage >= 0", name="ck_coupon_usage_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    coupon_code: Mapped[str] = mapped_column(String(50), ForeignKey("coupon.code"), nullable=False, index=True)
    usage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
