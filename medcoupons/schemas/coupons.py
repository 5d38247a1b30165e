from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from medcoupons.models.coupon import CouponDiscountTarget, CouponDiscountType, CouponUsageType
from medcoupons.schemas.cart import CartSnapshot


class CouponCreate(BaseModel):
    coupon_code: str = Field(min_length=3, max_length=50)
    expiry_date: datetime
    applicable_medicine_ids: list[str] = Field(default_factory=list)
    applicable_categories: list[str] = Field(default_factory=list)
    usage_type: CouponUsageType
    min_order_value: Decimal = Field(default=Decimal("0.00"), ge=0)
    valid_from: datetime
    valid_until: datetime
    terms_and_conditions: str | None = None
    discount_type: CouponDiscountType
    discount_value: Decimal = Field(gt=0)
    discount_target: CouponDiscountTarget = CouponDiscountTarget.inventory
    max_usage_per_user: int = Field(gt=0)

    @model_validator(mode="after")
    def _window_is_ordered(self) -> "CouponCreate":
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class CouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    expiry_date: datetime
    usage_type: CouponUsageType
    min_order_value: Decimal
    valid_from: datetime
    valid_until: datetime
    discount_type: CouponDiscountType
    discount_value: Decimal
    discount_target: str
    max_usage_per_user: int
    terms_and_conditions: str | None = None
    applicable_medicine_ids: list[str] = Field(default_factory=list)
    applicable_categories: list[str] = Field(default_factory=list)


class ApplicableCouponRead(BaseModel):
    coupon_code: str
    discount_value: Decimal


class ApplicableCouponsResponse(BaseModel):
    applicable_coupons: list[ApplicableCouponRead]


class CouponValidateRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    coupon_code: str = Field(min_length=1, max_length=50)
    cart: CartSnapshot


class DiscountRead(BaseModel):
    items_discount: Decimal
    charges_discount: Decimal


class CouponValidationResponse(BaseModel):
    is_valid: bool
    discount: DiscountRead | None = None
    order_value_after_discount: Decimal | None = None
    reason: str | None = None
    message: str
