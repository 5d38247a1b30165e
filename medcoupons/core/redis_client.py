from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def create_redis(url: str | None) -> Redis | None:
    """Return a Redis client when a REDIS_URL is configured, otherwise None."""
    cleaned = (url or "").strip()
    if not cleaned:
        return None
    return Redis.from_url(cleaned, encoding="utf-8", decode_responses=True)


async def close_redis(client: Redis | None) -> None:
    if client is None:
        return
    try:
        await client.aclose()
    except Exception:
        logger.exception("Failed to close Redis client")


def json_dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def json_loads(raw: str) -> Any:
    return json.loads(raw)
