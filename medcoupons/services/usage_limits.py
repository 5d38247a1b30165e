from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from medcoupons.services import coupon_store

logger = logging.getLogger(__name__)


async def try_consume_usage(
    session: AsyncSession,
    *,
    user_id: str,
    coupon_code: str,
    max_usage_per_user: int,
) -> bool:
    """Take one usage slot for ``(user_id, coupon_code)`` inside the caller's transaction.

    The usage row is read under ``FOR UPDATE`` so concurrent redemptions for the
    same pair queue behind each other; other pairs are unaffected. The increment
    itself is a conditional update, so the ceiling also holds on backends that
    ignore row locks. Returns False, leaving the row untouched, when the user has
    no slot left. Nothing is committed here: the caller owns the transaction and
    rolls the increment back if a later check fails.

    A first-ever redemption inserts the row; when two such inserts race, the
    loser gets ``IntegrityError`` from the unique ``(user_id, coupon_code)``
    constraint and should retry the whole transaction.
    """
    limit = int(max_usage_per_user)
    if limit <= 0:
        return False

    row = await coupon_store.get_usage(session, user_id=user_id, coupon_code=coupon_code, for_update=True)
    current = int(row.usage) if row is not None else 0
    if current >= limit:
        logger.info(
            "coupon_usage_limit_reached",
            extra={"user_id": user_id, "coupon_code": coupon_code, "usage": current, "limit": limit},
        )
        return False

    if row is None:
        await coupon_store.insert_usage(session, user_id=user_id, coupon_code=coupon_code)
        return True

    consumed = await coupon_store.increment_usage_below(
        session, user_id=user_id, coupon_code=coupon_code, max_usage=limit
    )
    if not consumed:
        # Another transaction took the last slot between our read and the update.
        logger.info("coupon_usage_lost_race", extra={"user_id": user_id, "coupon_code": coupon_code})
    return consumed
