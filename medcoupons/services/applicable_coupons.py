from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medcoupons.core.errors import PersistenceError, StoreTimeoutError
from medcoupons.models.coupon import Coupon, CouponDiscountType
from medcoupons.schemas.cart import CartSnapshot
from medcoupons.services import coupon_store
from medcoupons.services.catalog_cache import MedicineCatalogCache, resolve_medicines
from medcoupons.services.pricing import ZERO, percent_of, quantize_money, to_decimal

if TYPE_CHECKING:
    from medcoupons.core.context import CouponContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplicableCoupon:
    coupon_code: str
    discount_value: Decimal


def meets_listing_minimum(order_total: Decimal, min_order_value: Decimal | None) -> bool:
    """Inclusive: listing shows a coupon when the order sits exactly at its minimum."""
    return to_decimal(order_total) >= to_decimal(min_order_value)


def preview_discount(coupon: Coupon, order_total: Decimal) -> Decimal:
    """Whole-order estimate for display; redemption uses the per-item calculation instead."""
    if coupon.discount_type == CouponDiscountType.flat:
        return quantize_money(to_decimal(coupon.discount_value))
    if coupon.discount_type == CouponDiscountType.percentage:
        return quantize_money(percent_of(order_total, coupon.discount_value))
    return ZERO


async def _cart_categories(session: AsyncSession, cache: MedicineCatalogCache, cart: CartSnapshot) -> set[str]:
    known = await resolve_medicines(session, cache, cart.medicine_ids())
    categories: set[str] = set()
    for item in cart.items:
        medicine = known.get(item.medicine_id)
        category = medicine.category if medicine is not None else item.category
        if category:
            categories.add(category)
    return categories


async def find_applicable_coupons(
    session: AsyncSession, *, cache: MedicineCatalogCache, cart: CartSnapshot
) -> list[ApplicableCoupon]:
    """Candidate coupons for ``cart`` with a preview discount; never reads or writes usage."""
    categories = await _cart_categories(session, cache, cart)
    coupons = await coupon_store.find_coupons_for_scope(
        session, medicine_ids=cart.medicine_ids(), categories=categories
    )
    results = [
        ApplicableCoupon(coupon_code=coupon.code, discount_value=preview_discount(coupon, cart.order_total))
        for coupon in coupons
        if meets_listing_minimum(cart.order_total, coupon.min_order_value)
    ]
    logger.debug("applicable_coupons_scanned", extra={"candidates": len(coupons), "applicable": len(results)})
    return results


async def list_applicable_coupons(
    ctx: "CouponContext", *, cart: CartSnapshot, timeout: float | None = None
) -> list[ApplicableCoupon]:
    limit = ctx.settings.store_timeout_seconds if timeout is None else timeout

    async def _scan() -> list[ApplicableCoupon]:
        async with ctx.session_factory() as session:
            return await find_applicable_coupons(session, cache=ctx.catalog_cache, cart=cart)

    try:
        return await asyncio.wait_for(_scan(), timeout=limit)
    except asyncio.TimeoutError as exc:
        raise StoreTimeoutError("Listing applicable coupons timed out") from exc
    except SQLAlchemyError as exc:
        logger.exception("applicable_coupons_store_failed")
        raise PersistenceError("Could not load applicable coupons") from exc
