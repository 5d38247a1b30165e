from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from medcoupons.core.config import Settings
from medcoupons.core.redis_client import close_redis, create_redis
from medcoupons.db.session import build_engine, build_session_factory
from medcoupons.services.catalog_cache import MedicineCatalogCache

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass
class CouponContext:
    """Process-wide resources handed to every coupon operation.

    Built once at startup and read-mostly afterwards; nothing in the services
    reaches for a module-level engine or cache.
    """

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    catalog_cache: MedicineCatalogCache
    redis: "Redis | None" = None

    async def aclose(self) -> None:
        await close_redis(self.redis)
        await self.engine.dispose()


def build_context(settings: Settings, *, engine: AsyncEngine | None = None) -> CouponContext:
    engine = engine or build_engine(settings.database_url)
    redis = create_redis(settings.redis_url)
    cache = MedicineCatalogCache(
        ttl_seconds=settings.medicine_cache_ttl_seconds,
        max_entries=settings.medicine_cache_max_entries,
        redis=redis,
    )
    logger.info(
        "coupon_context_ready",
        extra={"cache_ttl_seconds": cache.ttl_seconds, "cache_max_entries": cache.max_entries, "redis": redis is not None},
    )
    return CouponContext(
        settings=settings,
        engine=engine,
        session_factory=build_session_factory(engine),
        catalog_cache=cache,
        redis=redis,
    )
