"""Infrastructure and lookup errors raised by the coupon services.

Business-rule outcomes (expired, below minimum order, usage limit reached) are
not exceptions; they travel as ``RejectionReason`` values on a
``RedemptionResult``.
"""

from __future__ import annotations

from fastapi import status


class CouponError(Exception):
    """Base class; ``code`` and ``status_code`` drive the wire translation in ``main``."""

    code: str = "coupon_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class CouponNotFoundError(CouponError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(CouponError):
    """Raised when lock or commit contention outlasts the retry budget, or a unique key already exists."""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class PersistenceError(CouponError):
    code = "persistence_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class StoreTimeoutError(PersistenceError):
    code = "store_timeout"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
