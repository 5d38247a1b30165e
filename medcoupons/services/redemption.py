from __future__ import annotations

import asyncio
import enum
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medcoupons.core.errors import ConflictError, CouponNotFoundError, PersistenceError, StoreTimeoutError
from medcoupons.schemas.cart import CartSnapshot
from medcoupons.services import coupon_store, usage_limits
from medcoupons.services.discounts import DiscountBreakdown, compute_discount, eligible_items_for_redemption
from medcoupons.services.eligibility import REJECTION_MESSAGES, RejectionReason, evaluate_eligibility
from medcoupons.services.pricing import ZERO, quantize_money

if TYPE_CHECKING:
    from medcoupons.core.context import CouponContext

logger = logging.getLogger(__name__)

_CONTENTION_MARKERS = ("locked", "deadlock", "could not serialize", "lock timeout", "lock not available")


class RedemptionState(str, enum.Enum):
    received = "received"
    eligibility_checked = "eligibility_checked"
    discount_computed = "discount_computed"
    usage_checked = "usage_checked"
    committed = "committed"
    rejected = "rejected"


@dataclass(frozen=True)
class RedemptionResult:
    is_valid: bool
    state: RedemptionState
    coupon_code: str
    reason: RejectionReason | None = None
    items_discount: Decimal = ZERO
    charges_discount: Decimal = ZERO
    order_value_after_discount: Decimal | None = None

    @property
    def message(self) -> str:
        if self.is_valid:
            return "Coupon applied successfully"
        return REJECTION_MESSAGES.get(self.reason, "Coupon cannot be applied") if self.reason else "Coupon cannot be applied"


def _is_contention(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    if isinstance(exc, OperationalError):
        text = str(getattr(exc, "orig", exc) or "").lower()
        return any(marker in text for marker in _CONTENTION_MARKERS)
    return False


def _log_state(state: RedemptionState, *, user_id: str, coupon_code: str, **extra: object) -> None:
    logger.debug("coupon_redemption_state", extra={"state": state.value, "user_id": user_id, "coupon_code": coupon_code, **extra})


def _rejected(code: str, reason: RejectionReason, *, user_id: str) -> RedemptionResult:
    logger.info("coupon_redemption_rejected", extra={"user_id": user_id, "coupon_code": code, "reason": reason.value})
    return RedemptionResult(is_valid=False, state=RedemptionState.rejected, coupon_code=code, reason=reason)


async def _redeem_once(
    session: AsyncSession,
    *,
    user_id: str,
    coupon_code: str,
    cart: CartSnapshot,
    now: datetime,
) -> RedemptionResult:
    _log_state(RedemptionState.received, user_id=user_id, coupon_code=coupon_code)
    coupon = await coupon_store.get_coupon_by_code(session, code=coupon_code)
    if coupon is None:
        raise CouponNotFoundError(f"Coupon {coupon_code!r} not found")
    # Read before any rollback, which expires loaded instances.
    code = coupon.code
    max_usage = coupon.max_usage_per_user

    # Checked before any write so a rejected attempt never consumes a slot.
    eligibility = evaluate_eligibility(coupon, cart, now)
    if not eligibility.valid:
        return _rejected(code, eligibility.reason or RejectionReason.expired, user_id=user_id)
    _log_state(RedemptionState.eligibility_checked, user_id=user_id, coupon_code=code)

    scope = await coupon_store.get_coupon_scope(session, code=code)
    if scope.is_empty:
        # A coupon with neither medicines nor categories applies to nothing.
        return _rejected(code, RejectionReason.not_applicable, user_id=user_id)
    eligible_items = eligible_items_for_redemption(cart.items, set(scope.medicine_ids))
    if not eligible_items:
        return _rejected(code, RejectionReason.not_applicable, user_id=user_id)
    discount: DiscountBreakdown = compute_discount(coupon, eligible_items)
    _log_state(RedemptionState.discount_computed, user_id=user_id, coupon_code=code, items=len(eligible_items))

    allowed = await usage_limits.try_consume_usage(
        session,
        user_id=user_id,
        coupon_code=code,
        max_usage_per_user=max_usage,
    )
    if not allowed:
        await session.rollback()
        return _rejected(code, RejectionReason.usage_limit_exceeded, user_id=user_id)
    _log_state(RedemptionState.usage_checked, user_id=user_id, coupon_code=code)

    # Re-read the definition inside the same unit; an edit that made it ineligible undoes the increment.
    await session.refresh(coupon)
    recheck = evaluate_eligibility(coupon, cart, now)
    if not recheck.valid:
        await session.rollback()
        return _rejected(code, recheck.reason or RejectionReason.expired, user_id=user_id)

    await session.commit()
    logger.info("coupon_redeemed", extra={"user_id": user_id, "coupon_code": code, "discount": str(discount.total)})
    return RedemptionResult(
        is_valid=True,
        state=RedemptionState.committed,
        coupon_code=code,
        items_discount=discount.items_discount,
        charges_discount=discount.charges_discount,
        order_value_after_discount=quantize_money(cart.order_total - discount.total),
    )


async def _redeem_with_retries(
    ctx: "CouponContext",
    *,
    user_id: str,
    coupon_code: str,
    cart: CartSnapshot,
    now: datetime,
) -> RedemptionResult:
    attempts = max(1, int(ctx.settings.redemption_max_attempts))
    last_error: SQLAlchemyError | None = None
    for attempt in range(1, attempts + 1):
        try:
            # Closing the session rolls back whatever is still open, cancellation included.
            async with ctx.session_factory() as session:
                return await _redeem_once(session, user_id=user_id, coupon_code=coupon_code, cart=cart, now=now)
        except SQLAlchemyError as exc:
            if not _is_contention(exc):
                logger.exception("coupon_redemption_store_failed", extra={"user_id": user_id, "coupon_code": coupon_code})
                raise PersistenceError("Coupon store unavailable") from exc
            last_error = exc
            logger.warning(
                "coupon_redemption_conflict",
                extra={"user_id": user_id, "coupon_code": coupon_code, "attempt": attempt, "error": str(exc)},
            )
            if attempt < attempts:
                await asyncio.sleep(random.uniform(0.005, 0.02) * attempt)
    raise ConflictError("Coupon redemption conflicted with concurrent requests; try again") from last_error


async def redeem_coupon(
    ctx: "CouponContext",
    *,
    user_id: str,
    coupon_code: str,
    cart: CartSnapshot,
    now: datetime | None = None,
    timeout: float | None = None,
) -> RedemptionResult:
    """Validate ``coupon_code`` for ``user_id`` and ``cart`` and consume one usage slot.

    Business-rule failures come back as ``RedemptionResult(is_valid=False)``.
    Unknown codes raise ``CouponNotFoundError``; contention that outlasts
    ``redemption_max_attempts`` raises ``ConflictError``; other store failures
    raise ``PersistenceError``. The whole operation, retries included, is bounded
    by ``timeout`` (defaulting to ``store_timeout_seconds``) and leaves no usage
    increment behind when it fails or is cancelled. Time rules are checked
    against ``now``, or the server clock when omitted, never the cart timestamp.
    """
    limit = ctx.settings.store_timeout_seconds if timeout is None else timeout
    # One server-side reference time for every check and retry of this request.
    reference = now or datetime.now(timezone.utc)
    try:
        return await asyncio.wait_for(
            _redeem_with_retries(ctx, user_id=user_id, coupon_code=coupon_code, cart=cart, now=reference),
            timeout=limit,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("coupon_redemption_timeout", extra={"user_id": user_id, "coupon_code": coupon_code})
        raise StoreTimeoutError("Coupon redemption timed out") from exc
