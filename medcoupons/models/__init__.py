from medcoupons.db.base import Base  # noqa: F401
from medcoupons.models.coupon import (  # noqa: F401
    Coupon,
    CouponCategory,
    CouponDiscountTarget,
    CouponDiscountType,
    CouponMedicine,
    CouponUsage,
    CouponUsageType,
)
from medcoupons.models.medicine import Medicine  # noqa: F401

__all__ = [
    "Base",
    "Coupon",
    "CouponCategory",
    "CouponDiscountTarget",
    "CouponDiscountType",
    "CouponMedicine",
    "CouponUsage",
    "CouponUsageType",
    "Medicine",
]
