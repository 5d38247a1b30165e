import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from medcoupons.core.errors import ConflictError, CouponNotFoundError, PersistenceError, StoreTimeoutError
from medcoupons.models.coupon import CouponDiscountTarget, CouponDiscountType
from medcoupons.services import redemption as redemption_module
from medcoupons.services.eligibility import Eligibility, RejectionReason
from medcoupons.services.redemption import RedemptionState, redeem_coupon
from tests.coupon_factories import IN_WINDOW, create_tables, make_cart, make_context, seed_coupon, usage_of


def _save10_cart(order_total: str = "150", **kwargs):
    return make_cart(("medicineA", 150), order_total=order_total, **kwargs)


@pytest.mark.anyio
async def test_save10_redemption_commits_discount_and_usage() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)

        result = await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)

        assert result.is_valid is True
        assert result.state == RedemptionState.committed
        assert result.items_discount == Decimal("15.00")
        assert result.charges_discount == Decimal("0.00")
        assert result.order_value_after_discount == Decimal("135.00")
        assert result.message == "Coupon applied successfully"
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") == 1
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_below_minimum_is_rejected_without_usage() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)

        result = await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart("50"), now=IN_WINDOW)

        assert result.is_valid is False
        assert result.state == RedemptionState.rejected
        assert result.reason == RejectionReason.min_order_not_met
        assert "minimum order value" in result.message
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") is None
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_second_redemption_hits_usage_limit() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)

        first = await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)
        second = await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)
        other_user = await redeem_coupon(ctx, user_id="u2", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)

        assert first.is_valid is True
        assert second.is_valid is False
        assert second.reason == RejectionReason.usage_limit_exceeded
        assert other_user.is_valid is True
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") == 1
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_expired_and_not_started_do_not_consume_usage() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)

        late = await redeem_coupon(
            ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW.replace(year=2025)
        )
        early = await redeem_coupon(
            ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW.replace(year=2023)
        )

        assert late.reason == RejectionReason.expired
        assert early.reason == RejectionReason.not_started
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") is None
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_out_of_scope_cart_is_not_applicable() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)

        cart = make_cart(("medicineB", 150), order_total="150")
        result = await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=cart, now=IN_WINDOW)

        assert result.reason == RejectionReason.not_applicable
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") is None
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_flat_discount_on_both_targets_reduces_order_twice() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(
            ctx,
            coupon_code="FLAT20",
            discount_type=CouponDiscountType.flat,
            discount_value=Decimal("20"),
            discount_target=CouponDiscountTarget.inventory_and_charges,
            applicable_medicine_ids=["medicineA", "medicineB"],
        )
        cart = make_cart(("medicineA", 100), ("medicineB", 50), order_total="150")

        result = await redeem_coupon(ctx, user_id="u1", coupon_code="flat20", cart=cart, now=IN_WINDOW)

        assert result.coupon_code == "FLAT20"
        assert result.items_discount == Decimal("20.00")
        assert result.charges_discount == Decimal("20.00")
        assert result.order_value_after_discount == Decimal("110.00")
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_unknown_code_raises_not_found() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        with pytest.raises(CouponNotFoundError):
            await redeem_coupon(ctx, user_id="u1", coupon_code="NOPE", cart=_save10_cart(), now=IN_WINDOW)
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_failed_recheck_rolls_back_increment(monkeypatch: pytest.MonkeyPatch) -> None:
    ctx = make_context()
    original = redemption_module.evaluate_eligibility
    calls = {"n": 0}

    def flaky(coupon, cart, now=None):
        calls["n"] += 1
        if calls["n"] == 1:
            return original(coupon, cart, now)
        return Eligibility(valid=False, reason=RejectionReason.expired)

    monkeypatch.setattr(redemption_module, "evaluate_eligibility", flaky)
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)

        result = await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)

        assert calls["n"] == 2
        assert result.is_valid is False
        assert result.reason == RejectionReason.expired
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") is None
    finally:
        await ctx.aclose()


async def _redeem_concurrently(tmp_path, *, attempts: int, max_usage: int):
    ctx = make_context(
        f"sqlite+aiosqlite:///{tmp_path / 'coupons.db'}",
        redemption_max_attempts=25,
        store_timeout_seconds=60,
    )
    try:
        await create_tables(ctx)
        await seed_coupon(ctx, max_usage_per_user=max_usage, usage_type="multi_use")

        results = await asyncio.gather(
            *(
                redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)
                for _ in range(attempts)
            )
        )
        return results, await usage_of(ctx, user_id="u1", coupon_code="SAVE10")
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_concurrent_redemptions_never_exceed_limit(tmp_path) -> None:
    results, usage = await _redeem_concurrently(tmp_path, attempts=6, max_usage=2)

    valid = [result for result in results if result.is_valid]
    rejected = [result for result in results if not result.is_valid]
    assert len(valid) == 2
    assert {result.reason for result in rejected} == {RejectionReason.usage_limit_exceeded}
    assert usage == 2


@pytest.mark.anyio
async def test_concurrent_redemptions_below_limit_all_succeed(tmp_path) -> None:
    results, usage = await _redeem_concurrently(tmp_path, attempts=3, max_usage=5)

    assert all(result.is_valid for result in results)
    assert usage == 3


@pytest.mark.anyio
async def test_backdated_cart_timestamp_does_not_extend_validity() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)

        # The cart claims mid-2024; the server clock is past the coupon's expiry.
        result = await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(timestamp=IN_WINDOW))

        assert result.is_valid is False
        assert result.reason == RejectionReason.expired
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") is None
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_coupon_without_any_scope_is_not_applicable() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx, coupon_code="NOSCOPE", applicable_medicine_ids=[], applicable_categories=[])

        result = await redeem_coupon(ctx, user_id="u1", coupon_code="NOSCOPE", cart=_save10_cart(), now=IN_WINDOW)

        assert result.is_valid is False
        assert result.reason == RejectionReason.not_applicable
        assert await usage_of(ctx, user_id="u1", coupon_code="NOSCOPE") is None
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_contention_is_retried_then_surfaces_conflict(monkeypatch: pytest.MonkeyPatch) -> None:
    ctx = make_context(redemption_max_attempts=3)
    attempts = {"n": 0}

    async def always_conflicting(session, **kwargs):
        attempts["n"] += 1
        raise IntegrityError("INSERT INTO coupon_usage", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(redemption_module, "_redeem_once", always_conflicting)
    monkeypatch.setattr(redemption_module.random, "uniform", lambda low, high: 0.0)
    try:
        with pytest.raises(ConflictError):
            await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)
        assert attempts["n"] == 3
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_locked_database_counts_as_contention(monkeypatch: pytest.MonkeyPatch) -> None:
    ctx = make_context(redemption_max_attempts=3)
    attempts = {"n": 0}

    async def locked_once(session, **kwargs):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise OperationalError("UPDATE coupon_usage", {}, Exception("database is locked"))
        return "ok"

    monkeypatch.setattr(redemption_module, "_redeem_once", locked_once)
    try:
        assert await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW) == "ok"
        assert attempts["n"] == 2
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_other_store_failures_raise_persistence_error(monkeypatch: pytest.MonkeyPatch) -> None:
    ctx = make_context()

    async def broken(session, **kwargs):
        raise OperationalError("SELECT coupon", {}, Exception("no such table: coupon"))

    monkeypatch.setattr(redemption_module, "_redeem_once", broken)
    try:
        with pytest.raises(PersistenceError) as excinfo:
            await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), now=IN_WINDOW)
        assert not isinstance(excinfo.value, StoreTimeoutError)
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_slow_store_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    ctx = make_context()

    async def slow(ctx, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(redemption_module, "_redeem_with_retries", slow)
    try:
        with pytest.raises(StoreTimeoutError):
            await redeem_coupon(ctx, user_id="u1", coupon_code="SAVE10", cart=_save10_cart(), timeout=0.01)
    finally:
        await ctx.aclose()
