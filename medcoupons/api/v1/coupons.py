from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from medcoupons.core.context import CouponContext
from medcoupons.core.dependencies import get_coupon_context
from medcoupons.db.session import get_session
from medcoupons.models.coupon import Coupon
from medcoupons.schemas.cart import CartSnapshot
from medcoupons.schemas.coupons import (
    ApplicableCouponRead,
    ApplicableCouponsResponse,
    CouponCreate,
    CouponRead,
    CouponValidateRequest,
    CouponValidationResponse,
    DiscountRead,
)
from medcoupons.services import coupon_store
from medcoupons.services.applicable_coupons import list_applicable_coupons
from medcoupons.services.redemption import RedemptionResult, redeem_coupon


router = APIRouter(prefix="/coupons", tags=["coupons"])
admin_router = APIRouter(prefix="/admin/coupons", tags=["admin"])


def _to_coupon_read(coupon: Coupon) -> CouponRead:
    base = CouponRead.model_validate(coupon, from_attributes=True)
    return base.model_copy(
        update={
            "applicable_medicine_ids": sorted(row.medicine_id for row in coupon.medicines),
            "applicable_categories": sorted(row.category_name for row in coupon.categories),
        }
    )


def _to_validation_response(result: RedemptionResult) -> CouponValidationResponse:
    if not result.is_valid:
        return CouponValidationResponse(
            is_valid=False,
            reason=result.reason.value if result.reason else None,
            message=result.message,
        )
    return CouponValidationResponse(
        is_valid=True,
        discount=DiscountRead(items_discount=result.items_discount, charges_discount=result.charges_discount),
        order_value_after_discount=result.order_value_after_discount,
        message=result.message,
    )


@router.post("/applicable", response_model=ApplicableCouponsResponse)
async def applicable_coupons(
    cart: CartSnapshot,
    ctx: CouponContext = Depends(get_coupon_context),
) -> ApplicableCouponsResponse:
    found = await list_applicable_coupons(ctx, cart=cart)
    return ApplicableCouponsResponse(
        applicable_coupons=[
            ApplicableCouponRead(coupon_code=item.coupon_code, discount_value=item.discount_value) for item in found
        ]
    )


@router.post("/validate", response_model=CouponValidationResponse)
async def validate_coupon(
    payload: CouponValidateRequest,
    ctx: CouponContext = Depends(get_coupon_context),
) -> CouponValidationResponse:
    result = await redeem_coupon(ctx, user_id=payload.user_id, coupon_code=payload.coupon_code, cart=payload.cart)
    return _to_validation_response(result)


@admin_router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def add_coupon(payload: CouponCreate, session: AsyncSession = Depends(get_session)) -> CouponRead:
    coupon = await coupon_store.create_coupon(session, payload)
    return _to_coupon_read(coupon)
