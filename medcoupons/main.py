import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from medcoupons.api.v1 import api_router
from medcoupons.core.config import Settings, get_settings
from medcoupons.core.context import CouponContext, build_context
from medcoupons.core.errors import CouponError
from medcoupons.core.logging_config import configure_logging, request_id_ctx_var
from medcoupons.middleware import RequestLoggingMiddleware
from medcoupons.schemas.error import ErrorResponse

logger = logging.getLogger(__name__)


def _error_payload(detail: object, code: str | None) -> dict:
    payload = ErrorResponse(detail=detail, code=code, request_id=request_id_ctx_var.get())
    return jsonable_encoder(payload.model_dump())


def get_application(settings: Settings | None = None, context: CouponContext | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = context is None
        app.state.coupons = context or build_context(settings)
        try:
            yield
        finally:
            if owned:
                await app.state.coupons.aclose()

    tags_metadata = [
        {"name": "coupons", "description": "Coupon listing and redemption"},
        {"name": "admin", "description": "Coupon authoring"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    if context is not None:
        # Available before startup too, for test clients that skip the lifespan.
        app.state.coupons = context
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(CouponError)
    async def coupon_error_handler(request: Request, exc: CouponError):
        if exc.status_code >= 500:
            logger.warning("coupon_infrastructure_error", extra={"code": exc.code, "path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, exc.code))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        return JSONResponse(status_code=422, content=_error_payload(errors, "validation_error"))

    return app


app = get_application()
