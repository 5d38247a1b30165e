from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CartItem(BaseModel):
    medicine_id: str = Field(min_length=1, max_length=64)
    category: str | None = Field(default=None, max_length=120)
    price: Decimal = Field(ge=0)


class CartSnapshot(BaseModel):
    items: list[CartItem] = Field(default_factory=list)
    order_total: Decimal = Field(ge=0)
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def medicine_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for item in self.items:
            seen.setdefault(item.medicine_id, None)
        return list(seen)
