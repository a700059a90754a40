from datetime import timedelta
from types import SimpleNamespace

import pytest

from store.models.coupon import CouponUsage
from store.services.coupons import compute_discount, normalize_code


async def test_percentage_coupon_discount(db, make_user, make_coupon, validator):
    user = await make_user(balance=0)
    await make_coupon(code="WELCOME10", type_="PERCENTAGE", value=10, min_amount=100_000)

    result = await validator.validate(db, "welcome10", user.id, 1_000_000)

    assert result.is_valid
    assert result.discount_amount == 100_000
    assert result.final_amount == 900_000
    assert result.coupon.code == "WELCOME10"


async def test_validation_has_no_side_effects(db, make_user, make_coupon, validator):
    user = await make_user()
    coupon = await make_coupon(code="WELCOME10", value=10)

    first = await validator.validate(db, "WELCOME10", user.id, 500_000)
    second = await validator.validate(db, "WELCOME10", user.id, 500_000)

    assert first == second
    await db.refresh(coupon)
    assert coupon.used_count == 0


async def test_percentage_discount_capped_by_max_discount(db, make_user, make_coupon, validator):
    user = await make_user()
    await make_coupon(code="BIG50", value=50, max_discount=30_000)

    result = await validator.validate(db, "BIG50", user.id, 200_000)

    assert result.discount_amount == 30_000
    assert result.final_amount == 170_000


async def test_fixed_discount_never_exceeds_amount(db, make_user, make_coupon, validator):
    user = await make_user()
    await make_coupon(code="FLAT", type_="FIXED", value=50_000)

    result = await validator.validate(db, "FLAT", user.id, 20_000)

    assert result.is_valid
    assert result.discount_amount == 20_000
    assert result.final_amount == 0


async def test_percentage_discount_is_floored(db, make_user, make_coupon, validator):
    user = await make_user()
    await make_coupon(code="ODD", value=15)

    result = await validator.validate(db, "ODD", user.id, 1_999)

    assert result.discount_amount == 299
    assert result.final_amount == 1_700


@pytest.mark.parametrize(
    "code, amount, coupon_kwargs, reason",
    [
        ("", 10_000, None, "invalid_code"),
        ("AB", 10_000, None, "invalid_code"),
        ("SAVE10", 500, None, "invalid_amount"),
        ("SAVE10", float("nan"), None, "invalid_amount"),
        ("SAVE10", float("inf"), None, "invalid_amount"),
        ("NOPE", 10_000, None, "not_found"),
        ("SAVE10", 10_000, {"is_active": False}, "inactive"),
        ("SAVE10", 10_000, {"min_amount": 50_000}, "below_min_amount"),
        ("SAVE10", 10_000, {"usage_limit": 5, "used_count": 5}, "usage_limit_reached"),
    ],
)
async def test_rejection_reasons(db, make_user, make_coupon, validator, code, amount, coupon_kwargs, reason):
    user = await make_user()
    await make_coupon(code="SAVE10", **(coupon_kwargs or {}))

    result = await validator.validate(db, code, user.id, amount)

    assert not result.is_valid
    assert result.reason == reason
    assert result.error


async def test_validity_window(db, make_user, make_coupon, validator, fixed_now):
    user = await make_user()
    await make_coupon(code="LATER", valid_from=fixed_now + timedelta(days=1))
    await make_coupon(code="GONE", valid_until=fixed_now - timedelta(seconds=1))
    await make_coupon(code="NOW", valid_from=fixed_now - timedelta(days=1), valid_until=fixed_now + timedelta(days=1))

    assert (await validator.validate(db, "LATER", user.id, 10_000)).reason == "not_started"
    assert (await validator.validate(db, "GONE", user.id, 10_000)).reason == "expired"
    assert (await validator.validate(db, "NOW", user.id, 10_000)).is_valid


async def test_already_used_by_this_user(db, make_user, make_coupon, validator):
    user = await make_user()
    other = await make_user()
    coupon = await make_coupon(code="ONCE")

    db.add(CouponUsage(coupon_id=coupon.id, user_id=user.id, order_id=None, discount_amount=1_000))
    await db.commit()

    assert (await validator.validate(db, "ONCE", user.id, 10_000)).reason == "already_used"
    assert (await validator.validate(db, "ONCE", other.id, 10_000)).is_valid


def test_compute_discount_clamps_bad_percentage():
    coupon = SimpleNamespace(code="BAD", type="PERCENTAGE", value=150, max_discount=None)
    assert compute_discount(coupon, 10_000) == 10_000

    coupon = SimpleNamespace(code="BAD", type="PERCENTAGE", value=0, max_discount=None)
    assert compute_discount(coupon, 10_000) == 100


def test_compute_discount_negative_fixed_is_zero():
    coupon = SimpleNamespace(code="NEG", type="FIXED", value=-500, max_discount=None)
    assert compute_discount(coupon, 10_000) == 0


def test_normalize_code():
    assert normalize_code("  welcome10 ") == "WELCOME10"
    assert normalize_code(None) == ""
