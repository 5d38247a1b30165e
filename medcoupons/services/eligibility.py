from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from medcoupons.models.coupon import Coupon
from medcoupons.schemas.cart import CartSnapshot
from medcoupons.services.pricing import to_decimal


class RejectionReason(str, enum.Enum):
    not_started = "not_started"
    expired = "expired"
    min_order_not_met = "min_order_not_met"
    not_applicable = "not_applicable"
    usage_limit_exceeded = "usage_limit_exceeded"


REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.not_started: "Coupon is not valid yet",
    RejectionReason.expired: "Coupon has expired",
    RejectionReason.min_order_not_met: "Order total must exceed the coupon minimum order value",
    RejectionReason.not_applicable: "Coupon does not apply to any medicine in the cart",
    RejectionReason.usage_limit_exceeded: "Coupon usage limit exceeded for this user",
}


@dataclass(frozen=True)
class Eligibility:
    valid: bool
    reason: RejectionReason | None = None

    @property
    def message(self) -> str | None:
        return REJECTION_MESSAGES.get(self.reason) if self.reason else None


ELIGIBLE = Eligibility(valid=True)


def _ensure_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _window_reason(coupon: Coupon, now: datetime) -> RejectionReason | None:
    if now < _ensure_utc(coupon.valid_from):
        return RejectionReason.not_started
    if now > _ensure_utc(coupon.valid_until):
        return RejectionReason.expired
    # The hard expiry applies even when valid_until is later.
    if now > _ensure_utc(coupon.expiry_date):
        return RejectionReason.expired
    return None


def meets_redemption_minimum(order_total: Decimal, min_order_value: Decimal | None) -> bool:
    """Strict: an order exactly at the minimum does not qualify for redemption."""
    return to_decimal(order_total) > to_decimal(min_order_value)


def evaluate_eligibility(coupon: Coupon, cart: CartSnapshot, now: datetime | None = None) -> Eligibility:
    """Decide whether ``coupon`` may be redeemed for ``cart`` at ``now``.

    Rules run in order and the first failure wins: the validity window and hard
    expiry, then the minimum order value. ``now`` defaults to the server clock;
    the cart's own ``timestamp`` is client supplied and never used here.
    """
    reference = _ensure_utc(now or datetime.now(timezone.utc))
    reason = _window_reason(coupon, reference)
    if reason is not None:
        return Eligibility(valid=False, reason=reason)
    if not meets_redemption_minimum(cart.order_total, coupon.min_order_value):
        return Eligibility(valid=False, reason=RejectionReason.min_order_not_met)
    return ELIGIBLE
