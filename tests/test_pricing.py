from decimal import Decimal

import pytest

from storefront.services.pricing import (
    CartLine,
    PromotionKind,
    PromotionRule,
    UnknownPromotionKind,
    Variant,
    calculate_totals,
    round2,
)

D = Decimal
RATE = D("0.18")


def _line(price, qty=1, variant=None, ref=1):
    return CartLine(product_ref=ref, quantity=qty, unit_price=D(price), variant=variant)


def test_two_units_standard_shipping_rounds_once():
    t = calculate_totals([_line("299.99", 2)], "standard", None, RATE)
    assert t.subtotal == D("599.98")
    assert t.shipping == D("100")
    assert t.tax == D("107.9964")
    # 599.98 + 107.9964 + 100 = 807.9764
    assert t.total == D("807.98")
    assert t.as_dict()["tax"] == 108.0


def test_free_shipping_above_threshold_for_any_method():
    for method in ("standard", "express", "overnight"):
        t = calculate_totals([_line("1250", 2)], method, None, RATE)
        assert t.subtotal == D("2500")
        assert t.shipping == 0


def test_shipping_fee_by_method_below_threshold():
    fees = {m: calculate_totals([_line("100")], m, None, RATE).shipping for m in ("standard", "express", "overnight")}
    assert fees == {"standard": D("100"), "express": D("200"), "overnight": D("500")}


def test_threshold_is_inclusive():
    t = calculate_totals([_line("2000")], "express", None, RATE)
    assert t.shipping == 0


def test_subtotal_includes_variant_adder():
    t = calculate_totals([_line("100", 2, Variant("size", "XL", D("50")))], "standard", None, RATE)
    assert t.subtotal == D("300")


def test_empty_cart_is_all_zero():
    t = calculate_totals([], "overnight", PromotionRule(PromotionKind.FIXED, D("500")), RATE)
    assert (t.subtotal, t.tax, t.shipping, t.discount, t.total) == (0, 0, 0, 0, 0)


def test_percentage_respects_cap():
    rule = PromotionRule(PromotionKind.PERCENTAGE, D("50"), cap=D("2000"))
    t = calculate_totals([_line("10000")], "standard", rule, RATE)
    assert t.discount == D("2000")
    assert t.savings == D("2000")


def test_percentage_without_cap():
    rule = PromotionRule(PromotionKind.PERCENTAGE, D("10"))
    t = calculate_totals([_line("500")], "standard", rule, RATE)
    assert t.discount == D("50")
    # 500 + 90 + 100 - 50
    assert t.total == D("640.00")


def test_fixed_never_exceeds_subtotal():
    rule = PromotionRule(PromotionKind.FIXED, D("500"))
    t = calculate_totals([_line("300")], "standard", rule, RATE)
    assert t.discount == D("300")
    # 300 + 54 + 100 - 300
    assert t.total == D("154.00")


def test_free_shipping_cancels_shipping():
    rule = PromotionRule(PromotionKind.FREE_SHIPPING)
    t = calculate_totals([_line("500")], "express", rule, RATE)
    assert t.shipping == 0
    assert t.discount == t.shipping
    assert t.savings == D("200")
    assert t.total == D("590.00")


def test_buy_x_get_y():
    rule = PromotionRule(
        PromotionKind.BUY_X_GET_Y, buy_qty=2, get_qty=1, get_discount_percent=D("100")
    )
    t = calculate_totals([_line("100", 6)], "standard", rule, RATE)
    assert t.discount == D("300")
    # 600 + 108 + 100 - 300
    assert t.total == D("508.00")


def test_buy_x_get_y_uses_base_price_per_line():
    rule = PromotionRule(
        PromotionKind.BUY_X_GET_Y, buy_qty=3, get_qty=1, get_discount_percent=D("50")
    )
    lines = [
        _line("100", 7, Variant("size", "XL", D("40")), ref=1),  # floor(7/3)=2 -> 100
        _line("80", 2, ref=2),  # nada
    ]
    t = calculate_totals(lines, "standard", rule, RATE)
    assert t.discount == D("100")


def test_total_never_negative():
    rule = PromotionRule(
        PromotionKind.BUY_X_GET_Y, buy_qty=1, get_qty=5, get_discount_percent=D("100")
    )
    t = calculate_totals([_line("100", 2)], "standard", rule, RATE)
    assert t.discount > t.subtotal + t.tax + t.shipping
    assert t.total == 0


def test_unknown_kind_fails_loudly():
    rule = PromotionRule(kind="mystery", magnitude=D("10"))
    with pytest.raises(UnknownPromotionKind):
        calculate_totals([_line("100")], "standard", rule, RATE)


def test_custom_threshold_and_fees():
    t = calculate_totals(
        [_line("100")],
        "express",
        None,
        D("0"),
        free_shipping_threshold=D("50"),
        shipping_fees={"express": D("999")},
    )
    assert t.shipping == 0
    assert t.total == D("100.00")


def test_round2_half_up():
    assert round2(D("0.005")) == D("0.01")
    assert round2("107.9964") == D("108.00")


def test_rule_bounds():
    rule = PromotionRule(
        PromotionKind.FIXED, D("10"), minimum_subtotal=D("100"), maximum_subtotal=D("1000")
    )
    assert rule.within_bounds(D("100"))
    assert not rule.within_bounds(D("99.99"))
    assert not rule.within_bounds(D("1000.01"))
