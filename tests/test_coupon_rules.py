from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from storefront.services.coupon_rules import (
    CouponRejected,
    check_eligibility,
    normalize_code,
    promotion_from_coupon,
)
from storefront.services.pricing import PromotionKind

NOW = datetime(2025, 8, 25, 12, 0)


def _coupon(**kw):
    base = dict(
        code="SAVE10",
        type="percentage",
        value=Decimal("10"),
        max_discount=None,
        minimum_order_value=Decimal("0"),
        maximum_order_value=None,
        usage_limit=None,
        usage_limit_per_user=1,
        used_count=0,
        start_date=NOW - timedelta(days=1),
        end_date=NOW + timedelta(days=1),
        applicable_products=[],
        applicable_categories=[],
        excluded_products=[],
        excluded_categories=[],
        applicable_users=[],
        excluded_users=[],
        new_users_only=False,
        buy_quantity=None,
        get_quantity=None,
        get_discount=None,
        is_active=True,
    )
    base.update(kw)
    return SimpleNamespace(**base)


def _check(coupon, **kw):
    kw.setdefault("user_id", 7)
    kw.setdefault("subtotal", Decimal("500"))
    kw.setdefault("lines", [(1, 10)])
    kw.setdefault("now", NOW)
    check_eligibility(coupon, **kw)


def _reason(coupon, **kw):
    with pytest.raises(CouponRejected) as exc:
        _check(coupon, **kw)
    return exc.value.code


def test_valid_coupon_passes():
    _check(_coupon())


@pytest.mark.parametrize(
    "overrides,expected",
    [
        ({"is_active": False}, "COUPON_INACTIVE"),
        ({"start_date": NOW + timedelta(hours=1)}, "COUPON_NOT_YET_VALID"),
        ({"end_date": NOW - timedelta(seconds=1)}, "COUPON_EXPIRED"),
        ({"usage_limit": 5, "used_count": 5}, "COUPON_MAX_USES_REACHED"),
        ({"minimum_order_value": Decimal("500.01")}, "COUPON_MIN_AMOUNT_NOT_MET"),
        ({"maximum_order_value": Decimal("499.99")}, "COUPON_MAX_AMOUNT_EXCEEDED"),
        ({"excluded_users": [7]}, "COUPON_USER_EXCLUDED"),
        ({"applicable_users": [8, 9]}, "COUPON_USER_NOT_ALLOWED"),
        ({"excluded_products": [1]}, "COUPON_PRODUCT_EXCLUDED"),
        ({"excluded_categories": [10]}, "COUPON_PRODUCT_EXCLUDED"),
        ({"applicable_products": [2]}, "COUPON_NOT_APPLICABLE"),
        ({"applicable_categories": [11]}, "COUPON_NOT_APPLICABLE"),
    ],
)
def test_rejections(overrides, expected):
    assert _reason(_coupon(**overrides)) == expected


def test_window_edges_are_inclusive():
    _check(_coupon(start_date=NOW, end_date=NOW))


def test_minimum_is_inclusive():
    _check(_coupon(minimum_order_value=Decimal("500")))


def test_first_failure_wins():
    c = _coupon(is_active=False, end_date=NOW - timedelta(days=1))
    assert _reason(c) == "COUPON_INACTIVE"


def test_per_user_cap():
    c = _coupon(usage_limit_per_user=2)
    _check(c, user_uses=1)
    assert _reason(c, user_uses=2) == "COUPON_ALREADY_USED"


def test_new_users_only():
    c = _coupon(new_users_only=True)
    _check(c, user_orders=0)
    assert _reason(c, user_orders=1) == "COUPON_NEW_USERS_ONLY"


def test_allow_lists_match_any_line():
    c = _coupon(applicable_categories=[20])
    _check(c, lines=[(1, 10), (2, 20)])


def test_normalize_code():
    assert normalize_code("  save10 ") == "SAVE10"
    assert normalize_code(None) == ""


def test_promotion_from_percentage_coupon_keeps_cap():
    rule = promotion_from_coupon(_coupon(max_discount=Decimal("200"), minimum_order_value=Decimal("100")))
    assert rule.kind is PromotionKind.PERCENTAGE
    assert rule.cap == Decimal("200")
    assert rule.minimum_subtotal == Decimal("100")


def test_promotion_from_fixed_coupon_ignores_cap():
    rule = promotion_from_coupon(_coupon(type="fixed", value=Decimal("50"), max_discount=Decimal("10")))
    assert rule.kind is PromotionKind.FIXED
    assert rule.cap is None
    assert rule.minimum_subtotal is None


def test_promotion_from_bogo_coupon():
    rule = promotion_from_coupon(
        _coupon(type="buy-x-get-y", buy_quantity=2, get_quantity=1, get_discount=Decimal("50"))
    )
    assert (rule.buy_qty, rule.get_qty, rule.get_discount_percent) == (2, 1, Decimal("50"))
