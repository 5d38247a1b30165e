from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from medcoupons.core.errors import ConflictError
from medcoupons.models.coupon import Coupon, CouponCategory, CouponMedicine, CouponUsage
from medcoupons.models.medicine import Medicine
from medcoupons.schemas.coupons import CouponCreate


@dataclass(frozen=True)
class CouponScope:
    medicine_ids: frozenset[str] = field(default_factory=frozenset)
    categories: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not self.medicine_ids and not self.categories


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _clean_values(values: Iterable[str | None]) -> list[str]:
    return sorted({value.strip() for value in values if value and value.strip()})


async def get_coupon_by_code(session: AsyncSession, *, code: str) -> Coupon | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    res = await session.execute(
        select(Coupon).options(selectinload(Coupon.medicines), selectinload(Coupon.categories)).where(Coupon.code == cleaned)
    )
    return res.scalar_one_or_none()


async def get_coupon_scope(session: AsyncSession, *, code: str) -> CouponScope:
    cleaned = normalize_code(code)
    medicine_ids = (
        await session.execute(select(CouponMedicine.medicine_id).where(CouponMedicine.coupon_code == cleaned))
    ).scalars().all()
    categories = (
        await session.execute(select(CouponCategory.category_name).where(CouponCategory.coupon_code == cleaned))
    ).scalars().all()
    return CouponScope(medicine_ids=frozenset(medicine_ids), categories=frozenset(categories))


async def find_coupons_for_scope(
    session: AsyncSession, *, medicine_ids: Iterable[str], categories: Iterable[str | None]
) -> list[Coupon]:
    """Coupons whose medicine scope or category scope intersects the given sets, one row per code."""
    ids = _clean_values(medicine_ids)
    names = _clean_values(categories)
    if not ids and not names:
        return []

    by_medicine = select(CouponMedicine.coupon_code).where(CouponMedicine.medicine_id.in_(ids))
    by_category = select(CouponCategory.coupon_code).where(CouponCategory.category_name.in_(names))
    res = await session.execute(
        select(Coupon)
        .where(or_(Coupon.code.in_(by_medicine), Coupon.code.in_(by_category)))
        .order_by(Coupon.code)
    )
    return list(res.scalars().unique().all())


async def get_medicines_by_ids(session: AsyncSession, *, medicine_ids: Iterable[str]) -> list[Medicine]:
    ids = _clean_values(medicine_ids)
    if not ids:
        return []
    res = await session.execute(select(Medicine).where(Medicine.id.in_(ids)))
    return list(res.scalars().all())


async def get_usage(
    session: AsyncSession, *, user_id: str, coupon_code: str, for_update: bool = False
) -> CouponUsage | None:
    stmt = select(CouponUsage).where(CouponUsage.user_id == user_id, CouponUsage.coupon_code == normalize_code(coupon_code))
    if for_update:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


async def insert_usage(session: AsyncSession, *, user_id: str, coupon_code: str) -> CouponUsage:
    """Insert the first usage row; a concurrent insert for the same pair raises IntegrityError on flush."""
    row = CouponUsage(user_id=user_id, coupon_code=normalize_code(coupon_code), usage=1)
    session.add(row)
    await session.flush()
    return row


async def increment_usage_below(session: AsyncSession, *, user_id: str, coupon_code: str, max_usage: int) -> bool:
    """Atomically bump usage unless it already reached ``max_usage``; True when a row changed."""
    res = await session.execute(
        update(CouponUsage)
        .where(
            CouponUsage.user_id == user_id,
            CouponUsage.coupon_code == normalize_code(coupon_code),
            CouponUsage.usage < int(max_usage),
        )
        .values(usage=CouponUsage.usage + 1)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0) == 1


async def create_coupon(session: AsyncSession, payload: CouponCreate) -> Coupon:
    code = normalize_code(payload.coupon_code)
    coupon = Coupon(
        code=code,
        expiry_date=payload.expiry_date,
        usage_type=payload.usage_type,
        min_order_value=payload.min_order_value,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
        discount_type=payload.discount_type,
        discount_value=payload.discount_value,
        discount_target=payload.discount_target.value,
        max_usage_per_user=payload.max_usage_per_user,
        terms_and_conditions=payload.terms_and_conditions,
        medicines=[CouponMedicine(coupon_code=code, medicine_id=mid) for mid in _clean_values(payload.applicable_medicine_ids)],
        categories=[
            CouponCategory(coupon_code=code, category_name=name) for name in _clean_values(payload.applicable_categories)
        ],
    )
    session.add(coupon)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(f"Coupon {code} already exists") from exc
    return coupon
