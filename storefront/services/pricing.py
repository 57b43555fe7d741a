"""
Cálculo de totales del carrito.

Funciones puras (sin I/O): reciben líneas, método de envío y, opcionalmente,
una promoción; devuelven un ``Totals``. El redondeo a centavos se hace una
sola vez, al final, sobre el total.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional

from ..core.config import settings

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

SHIPPING_METHODS = ("standard", "express", "overnight")


class PromotionKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free-shipping"
    BUY_X_GET_Y = "buy-x-get-y"


class UnknownPromotionKind(ValueError):
    pass


def _dec(v) -> Decimal:
    if v is None:
        return ZERO
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def round2(v) -> Decimal:
    return _dec(v).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Variant:
    name: str
    value: str
    price_adder: Decimal = ZERO


@dataclass(frozen=True)
class CartLine:
    product_ref: int
    quantity: int
    unit_price: Decimal
    variant: Optional[Variant] = None

    @property
    def effective_price(self) -> Decimal:
        adder = self.variant.price_adder if self.variant else ZERO
        return _dec(self.unit_price) + _dec(adder)

    @property
    def line_total(self) -> Decimal:
        return self.effective_price * self.quantity


@dataclass(frozen=True)
class PromotionRule:
    kind: PromotionKind
    magnitude: Decimal = ZERO
    cap: Optional[Decimal] = None
    minimum_subtotal: Optional[Decimal] = None
    maximum_subtotal: Optional[Decimal] = None
    buy_qty: int = 1
    get_qty: int = 1
    get_discount_percent: Decimal = HUNDRED
    code: Optional[str] = None

    def within_bounds(self, subtotal: Decimal) -> bool:
        if self.minimum_subtotal is not None and subtotal < self.minimum_subtotal:
            return False
        if self.maximum_subtotal is not None and subtotal > self.maximum_subtotal:
            return False
        return True


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    tax_rate: Decimal = ZERO
    shipping: Decimal = ZERO
    discount: Decimal = ZERO
    total: Decimal = ZERO
    # Lo que el cliente se ahorra (para free-shipping: el envío condonado)
    savings: Decimal = ZERO

    def as_dict(self) -> dict:
        # total ya viene redondeado; el resto se redondea sólo para mostrar
        return {
            "subtotal": float(round2(self.subtotal)),
            "tax": float(round2(self.tax)),
            "tax_rate": float(self.tax_rate),
            "shipping": float(round2(self.shipping)),
            "discount": float(round2(self.discount)),
            "total": float(self.total),
        }


def calculate_subtotal(lines: Iterable[CartLine]) -> Decimal:
    return sum((line.line_total for line in lines), ZERO)


def shipping_fee(
    method: str,
    subtotal: Decimal,
    *,
    threshold: Optional[Decimal] = None,
    fees: Optional[dict] = None,
) -> Decimal:
    """Tarifa de envío sin considerar promociones."""
    threshold = settings.free_shipping_threshold if threshold is None else _dec(threshold)
    fees = settings.shipping_fees if fees is None else fees
    if subtotal >= threshold:
        return ZERO
    return _dec(fees[method])


def calculate_shipping(
    method: str,
    subtotal: Decimal,
    promotion: Optional[PromotionRule] = None,
    *,
    threshold: Optional[Decimal] = None,
    fees: Optional[dict] = None,
) -> Decimal:
    if promotion is not None and promotion.kind == PromotionKind.FREE_SHIPPING:
        return ZERO
    return shipping_fee(method, subtotal, threshold=threshold, fees=fees)


def _buy_x_get_y(lines: Iterable[CartLine], rule: PromotionRule) -> Decimal:
    total = ZERO
    pct = _dec(rule.get_discount_percent)
    for line in lines:
        eligible_units = (line.quantity // rule.buy_qty) * rule.get_qty
        total += _dec(line.unit_price) * eligible_units * pct / HUNDRED
    return total


def calculate_discount(
    lines: list[CartLine],
    subtotal: Decimal,
    shipping: Decimal,
    promotion: Optional[PromotionRule],
) -> Decimal:
    if promotion is None:
        return ZERO

    kind = promotion.kind
    if kind == PromotionKind.PERCENTAGE:
        discount = subtotal * _dec(promotion.magnitude) / HUNDRED
        if promotion.cap is not None:
            discount = min(discount, _dec(promotion.cap))
        return discount
    if kind == PromotionKind.FIXED:
        return min(_dec(promotion.magnitude), subtotal)
    if kind == PromotionKind.FREE_SHIPPING:
        # el envío ya quedó en 0; el "descuento" sólo lo cancela
        return shipping
    if kind == PromotionKind.BUY_X_GET_Y:
        return _buy_x_get_y(lines, promotion)
    raise UnknownPromotionKind(f"unknown promotion kind: {kind!r}")


def calculate_totals(
    lines: Iterable[CartLine],
    shipping_method: str = "standard",
    promotion: Optional[PromotionRule] = None,
    tax_rate: Optional[Decimal] = None,
    *,
    free_shipping_threshold: Optional[Decimal] = None,
    shipping_fees: Optional[dict] = None,
) -> Totals:
    lines = list(lines)
    tax_rate = settings.tax_rate if tax_rate is None else _dec(tax_rate)
    if not lines:
        # carrito vacío: nada que enviar ni cobrar
        return Totals(tax_rate=tax_rate)

    subtotal = calculate_subtotal(lines)
    shipping = calculate_shipping(
        shipping_method,
        subtotal,
        promotion,
        threshold=free_shipping_threshold,
        fees=shipping_fees,
    )
    tax = subtotal * tax_rate
    discount = calculate_discount(lines, subtotal, shipping, promotion)
    total = max(ZERO, round2(subtotal + tax + shipping - discount))

    savings = discount
    if promotion is not None and promotion.kind == PromotionKind.FREE_SHIPPING:
        savings = shipping_fee(
            shipping_method, subtotal, threshold=free_shipping_threshold, fees=shipping_fees
        )

    return Totals(
        subtotal=subtotal,
        tax=tax,
        tax_rate=tax_rate,
        shipping=shipping,
        discount=discount,
        total=total,
        savings=savings,
    )
