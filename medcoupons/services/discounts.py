from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from medcoupons.models.coupon import Coupon, CouponDiscountTarget, CouponDiscountType
from medcoupons.schemas.cart import CartItem
from medcoupons.services.pricing import ZERO, percent_of, quantize_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountBreakdown:
    items_discount: Decimal
    charges_discount: Decimal

    @property
    def total(self) -> Decimal:
        return self.items_discount + self.charges_discount


NO_DISCOUNT = DiscountBreakdown(items_discount=ZERO, charges_discount=ZERO)


def _target_buckets(target: str) -> tuple[bool, bool] | None:
    """(items, charges) selection for a discount target, or None when unsupported."""
    try:
        parsed = CouponDiscountTarget(target)
    except ValueError:
        return None
    if parsed == CouponDiscountTarget.inventory:
        return True, False
    if parsed == CouponDiscountTarget.charges:
        return False, True
    return True, True


def eligible_items_for_redemption(items: Iterable[CartItem], medicine_scope: set[str]) -> list[CartItem]:
    """Items whose medicine id is explicitly in scope; category matches do not count here."""
    return [item for item in items if item.medicine_id in medicine_scope]


def compute_discount(coupon: Coupon, eligible_items: Sequence[CartItem]) -> DiscountBreakdown:
    buckets = _target_buckets(str(getattr(coupon.discount_target, "value", coupon.discount_target)))
    if buckets is None:
        logger.debug(
            "coupon_discount_target_unsupported",
            extra={"coupon_code": coupon.code, "target": coupon.discount_target},
        )
        return NO_DISCOUNT
    if not eligible_items:
        return NO_DISCOUNT

    to_items, to_charges = buckets
    value = to_decimal(coupon.discount_value)
    items_discount = ZERO
    charges_discount = ZERO

    if coupon.discount_type == CouponDiscountType.flat:
        # Once per target, however many eligible items there are.
        if to_items:
            items_discount = value
        if to_charges:
            charges_discount = value
    elif coupon.discount_type == CouponDiscountType.percentage:
        for item in eligible_items:
            amount = percent_of(item.price, value)
            if to_items:
                items_discount += amount
            if to_charges:
                charges_discount += amount

    return DiscountBreakdown(
        items_discount=quantize_money(items_discount),
        charges_discount=quantize_money(charges_discount),
    )
