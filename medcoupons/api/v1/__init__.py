from fastapi import APIRouter

from medcoupons.api.v1 import coupons

api_router = APIRouter()

api_router.include_router(coupons.router)
api_router.include_router(coupons.admin_router)

__all__ = ["api_router"]
