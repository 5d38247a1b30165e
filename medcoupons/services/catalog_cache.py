from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from medcoupons.core.redis_client import json_dumps, json_loads
from medcoupons.services import coupon_store

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60
_REDIS_PREFIX = "medicine:"


@dataclass(frozen=True)
class MedicineInfo:
    id: str
    name: str
    category: str
    price: Decimal

    def to_json(self) -> str:
        return json_dumps({"id": self.id, "name": self.name, "category": self.category, "price": str(self.price)})

    @classmethod
    def from_json(cls, raw: str) -> "MedicineInfo":
        data = json_loads(raw)
        return cls(id=str(data["id"]), name=str(data["name"]), category=str(data["category"]), price=Decimal(data["price"]))


@dataclass
class _Entry:
    value: MedicineInfo
    expires_at: float


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int


class MedicineCatalogCache:
    """In-process TTL cache of medicine metadata keyed by medicine id.

    Entries expire after ``ttl_seconds``. When ``max_entries`` is reached the
    cache drops expired entries first, then the least recently used one. All
    access goes through one lock so request handlers on different threads can
    share an instance. When a Redis client is supplied, ``resolve_medicines``
    also consults and fills it so several workers share warm entries.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = 10_000,
        redis: "Redis | None" = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = int(ttl_seconds)
        self.max_entries = int(max_entries)
        self.redis = redis
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, medicine_id: str) -> MedicineInfo | None:
        with self._lock:
            entry = self._entries.get(medicine_id)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[medicine_id]
                self._misses += 1
                return None
            self._entries.move_to_end(medicine_id)
            self._hits += 1
            return entry.value

    def get_many(self, medicine_ids: Iterable[str]) -> tuple[dict[str, MedicineInfo], list[str]]:
        hits: dict[str, MedicineInfo] = {}
        missing: list[str] = []
        for medicine_id in dict.fromkeys(medicine_ids):
            value = self.get(medicine_id)
            if value is None:
                missing.append(medicine_id)
            else:
                hits[medicine_id] = value
        return hits, missing

    def put(self, medicine_id: str, medicine: MedicineInfo, ttl: int | None = None) -> None:
        ttl_seconds = self.ttl_seconds if ttl is None else int(ttl)
        with self._lock:
            now = self._clock()
            if medicine_id in self._entries:
                self._entries.move_to_end(medicine_id)
            elif len(self._entries) >= self.max_entries:
                self._make_room(now)
            self._entries[medicine_id] = _Entry(value=medicine, expires_at=now + ttl_seconds)

    def invalidate(self, medicine_id: str) -> None:
        with self._lock:
            self._entries.pop(medicine_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._evictions = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, evictions=self._evictions, size=len(self._entries))

    def _make_room(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1


async def _redis_lookup(cache: MedicineCatalogCache, medicine_ids: list[str]) -> dict[str, MedicineInfo]:
    if cache.redis is None or not medicine_ids:
        return {}
    try:
        raw_values = await cache.redis.mget([f"{_REDIS_PREFIX}{medicine_id}" for medicine_id in medicine_ids])
    except Exception as exc:
        logger.warning("medicine_cache_redis_read_failed", extra={"error": str(exc)})
        return {}
    found: dict[str, MedicineInfo] = {}
    for medicine_id, raw in zip(medicine_ids, raw_values):
        if not raw:
            continue
        try:
            found[medicine_id] = MedicineInfo.from_json(raw)
        except (ValueError, KeyError, TypeError, InvalidOperation) as exc:
            # Undecodable shared entries count as misses and get rewritten from the store.
            logger.warning(
                "medicine_cache_redis_entry_invalid", extra={"medicine_id": medicine_id, "error": str(exc)}
            )
    return found


async def _redis_store(cache: MedicineCatalogCache, medicines: Iterable[MedicineInfo]) -> None:
    if cache.redis is None:
        return
    try:
        async with cache.redis.pipeline(transaction=False) as pipe:
            for medicine in medicines:
                pipe.set(f"{_REDIS_PREFIX}{medicine.id}", medicine.to_json(), ex=cache.ttl_seconds)
            await pipe.execute()
    except Exception as exc:
        logger.warning("medicine_cache_redis_write_failed", extra={"error": str(exc)})


async def resolve_medicines(
    session: AsyncSession, cache: MedicineCatalogCache, medicine_ids: Iterable[str]
) -> dict[str, MedicineInfo]:
    """Read-through lookup: cache first, then one batched store query for the misses.

    Unknown ids are absent from the result.
    """
    resolved, missing = cache.get_many(medicine_ids)
    if not missing:
        return resolved

    shared = await _redis_lookup(cache, missing)
    for medicine_id, medicine in shared.items():
        cache.put(medicine_id, medicine)
        resolved[medicine_id] = medicine
    missing = [medicine_id for medicine_id in missing if medicine_id not in shared]
    if not missing:
        return resolved

    rows = await coupon_store.get_medicines_by_ids(session, medicine_ids=missing)
    fetched = [MedicineInfo(id=row.id, name=row.name, category=row.category, price=Decimal(row.price)) for row in rows]
    for medicine in fetched:
        cache.put(medicine.id, medicine)
        resolved[medicine.id] = medicine
    await _redis_store(cache, fetched)
    logger.debug("medicine_cache_fill", extra={"requested": len(missing), "found": len(fetched)})
    return resolved
