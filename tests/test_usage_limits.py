import pytest

from medcoupons.services.usage_limits import try_consume_usage
from tests.coupon_factories import create_tables, make_context, seed_coupon, usage_of


@pytest.mark.anyio
async def test_consume_creates_row_then_increments_up_to_limit() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx, max_usage_per_user=2)

        outcomes = []
        for _ in range(3):
            async with ctx.session_factory() as session:
                allowed = await try_consume_usage(session, user_id="u1", coupon_code="SAVE10", max_usage_per_user=2)
                await session.commit()
                outcomes.append(allowed)

        assert outcomes == [True, True, False]
        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") == 2
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_rolled_back_consumption_leaves_no_usage() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)
        async with ctx.session_factory() as session:
            assert await try_consume_usage(session, user_id="u1", coupon_code="SAVE10", max_usage_per_user=1)
            await session.rollback()

        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") is None
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_users_have_independent_slots() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        await seed_coupon(ctx)
        for user_id in ("u1", "u2"):
            async with ctx.session_factory() as session:
                assert await try_consume_usage(session, user_id=user_id, coupon_code="SAVE10", max_usage_per_user=1)
                await session.commit()

        assert await usage_of(ctx, user_id="u1", coupon_code="SAVE10") == 1
        assert await usage_of(ctx, user_id="u2", coupon_code="SAVE10") == 1
    finally:
        await ctx.aclose()


@pytest.mark.anyio
async def test_non_positive_limit_never_allows() -> None:
    ctx = make_context()
    try:
        await create_tables(ctx)
        async with ctx.session_factory() as session:
            assert await try_consume_usage(session, user_id="u1", coupon_code="SAVE10", max_usage_per_user=0) is False
    finally:
        await ctx.aclose()
