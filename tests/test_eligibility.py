from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from medcoupons.services.eligibility import (
    RejectionReason,
    evaluate_eligibility,
    meets_redemption_minimum,
)
from tests.coupon_factories import make_cart


def _coupon(**overrides) -> SimpleNamespace:
    data = {
        "code": "SAVE10",
        "valid_from": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "valid_until": datetime(2024, 12, 31, tzinfo=timezone.utc),
        "expiry_date": datetime(2024, 12, 31, tzinfo=timezone.utc),
        "min_order_value": Decimal("100.00"),
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def _at(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


def test_eligible_inside_window_above_minimum() -> None:
    result = evaluate_eligibility(_coupon(), make_cart(("medicineA", 150), order_total="150"), _at(2024, 6, 1))
    assert result.valid is True
    assert result.reason is None
    assert result.message is None


def test_not_started_before_valid_from() -> None:
    result = evaluate_eligibility(_coupon(), make_cart(("medicineA", 150), order_total="150"), _at(2023, 12, 31))
    assert result.valid is False
    assert result.reason == RejectionReason.not_started


def test_expired_after_valid_until() -> None:
    coupon = _coupon(expiry_date=datetime(2025, 6, 1, tzinfo=timezone.utc))
    result = evaluate_eligibility(coupon, make_cart(("medicineA", 150), order_total="150"), _at(2025, 1, 2))
    assert result.reason == RejectionReason.expired


def test_hard_expiry_applies_inside_validity_window() -> None:
    coupon = _coupon(
        valid_until=datetime(2025, 6, 30, tzinfo=timezone.utc),
        expiry_date=datetime(2024, 12, 31, tzinfo=timezone.utc),
    )
    result = evaluate_eligibility(coupon, make_cart(("medicineA", 150), order_total="150"), _at(2025, 3, 1))
    assert result.valid is False
    assert result.reason == RejectionReason.expired
    assert result.message == "Coupon has expired"


def test_window_checked_before_minimum_order() -> None:
    result = evaluate_eligibility(_coupon(), make_cart(("medicineA", 10), order_total="10"), _at(2025, 2, 1))
    assert result.reason == RejectionReason.expired


def test_minimum_order_boundary_is_exclusive() -> None:
    at_minimum = evaluate_eligibility(_coupon(), make_cart(("medicineA", 100), order_total="100.00"), _at(2024, 6, 1))
    assert at_minimum.valid is False
    assert at_minimum.reason == RejectionReason.min_order_not_met
    assert "minimum order value" in (at_minimum.message or "")

    above = evaluate_eligibility(_coupon(), make_cart(("medicineA", 100), order_total="100.01"), _at(2024, 6, 1))
    assert above.valid is True


def test_naive_store_datetimes_are_read_as_utc() -> None:
    coupon = _coupon(
        valid_from=datetime(2024, 1, 1),
        valid_until=datetime(2024, 12, 31),
        expiry_date=datetime(2024, 12, 31),
    )
    assert evaluate_eligibility(coupon, make_cart(("medicineA", 150), order_total="150"), _at(2024, 6, 1)).valid
    assert evaluate_eligibility(coupon, make_cart(("medicineA", 150), order_total="150"), _at(2025, 1, 1)).reason == (
        RejectionReason.expired
    )


def test_cart_timestamp_is_ignored_for_time_rules() -> None:
    cart = make_cart(("medicineA", 150), order_total="150", timestamp=_at(2024, 6, 1))
    assert evaluate_eligibility(_coupon(), cart, _at(2025, 2, 1)).reason == RejectionReason.expired
    # Without an explicit time the server clock applies, which is past this 2024 coupon.
    assert evaluate_eligibility(_coupon(), cart).reason == RejectionReason.expired


def test_meets_redemption_minimum_handles_missing_minimum() -> None:
    assert meets_redemption_minimum(Decimal("0.01"), None) is True
    assert meets_redemption_minimum(Decimal("0.00"), Decimal("0.00")) is False
