from fastapi import HTTPException, Request, status

from medcoupons.core.context import CouponContext


def get_coupon_context(request: Request) -> CouponContext:
    ctx = getattr(request.app.state, "coupons", None)
    if ctx is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Coupon service not initialised")
    return ctx
