"""
Operaciones sobre el carrito persistido.

Cada mutación termina llamando a ``recalculate(cart)`` de forma explícita; el
commit lo hace el caller (router).
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.cart import Cart, CartItem
from ..models.customer import Customer
from .price_book import PriceBook, is_purchasable
from .pricing import (
    SHIPPING_METHODS,
    CartLine,
    PromotionKind,
    PromotionRule,
    Variant,
    calculate_subtotal,
    calculate_totals,
    round2,
)

logger = logging.getLogger(__name__)

DELIVERY_DAYS = {"standard": 5, "express": 2, "overnight": 1}


class CartError(Exception):
    def __init__(self, status_code: int, code: str, message: str = ""):
        super().__init__(message or code)
        self.status_code = status_code
        self.code = code
        self.message = message or code


def _dec(v) -> Optional[Decimal]:
    return None if v is None else Decimal(str(v))


def get_cart(db: Session, user_id: int) -> Optional[Cart]:
    return db.query(Cart).filter_by(user_id=user_id).first()


def get_or_create_cart(db: Session, user_id: int) -> Cart:
    cart = get_cart(db, user_id)
    if cart:
        return cart
    if db.get(Customer, user_id) is None:
        db.add(Customer(id=user_id))
        db.flush()
    cart = Cart(user_id=user_id, shipping_method="standard", tax_rate=settings.tax_rate)
    db.add(cart)
    db.flush()
    recalculate(cart)
    return cart


# --- líneas / promoción -> dominio puro ---


def cart_lines(cart: Cart) -> list[CartLine]:
    lines = []
    for it in cart.items:
        variant = None
        if it.variant_name:
            variant = Variant(it.variant_name, it.variant_value, _dec(it.variant_price or 0))
        lines.append(CartLine(it.product_id, int(it.quantity), _dec(it.price), variant))
    return lines


def promotion_of(cart: Cart) -> Optional[PromotionRule]:
    ac = cart.applied_coupon
    if not ac:
        return None
    get_discount = ac.get("get_discount")
    return PromotionRule(
        kind=PromotionKind(ac["type"]),
        magnitude=_dec(ac.get("value")) or Decimal("0"),
        cap=_dec(ac.get("max_discount")),
        minimum_subtotal=_dec(ac.get("minimum_order_value")),
        maximum_subtotal=_dec(ac.get("maximum_order_value")),
        buy_qty=int(ac.get("buy_quantity") or 1),
        get_qty=int(ac.get("get_quantity") or 1),
        get_discount_percent=Decimal("100") if get_discount is None else _dec(get_discount),
        code=ac.get("code"),
    )


def _s(v) -> Optional[str]:
    return None if v is None else str(v)


def recalculate(cart: Cart, now: Optional[datetime] = None) -> None:
    now = now or datetime.utcnow()
    lines = cart_lines(cart)
    rule = promotion_of(cart)

    if rule is not None and not rule.within_bounds(calculate_subtotal(lines)):
        logger.info(
            "cart %s: coupon %s dropped, subtotal out of bounds", cart.id, rule.code
        )
        cart.applied_coupon = None
        rule = None

    tax_rate = _dec(cart.tax_rate) if cart.tax_rate is not None else settings.tax_rate
    totals = calculate_totals(lines, cart.shipping_method or "standard", rule, tax_rate)

    cart.subtotal = round2(totals.subtotal)
    cart.tax = round2(totals.tax)
    cart.tax_rate = totals.tax_rate
    cart.shipping = round2(totals.shipping)
    cart.discount = round2(totals.discount)
    cart.total = totals.total
    if cart.applied_coupon:
        # nuevo dict para que SQLAlchemy detecte el cambio del JSON
        cart.applied_coupon = {**cart.applied_coupon, "savings": str(round2(totals.savings))}

    days = DELIVERY_DAYS.get(cart.shipping_method, DELIVERY_DAYS["standard"])
    cart.estimated_delivery = now + timedelta(days=days)
    cart.updated_at = now


def _check_stock(product, quantity: int, already: int = 0) -> None:
    if not product.track_quantity:
        return
    stock = int(product.stock or 0)
    if stock < quantity:
        if already:
            raise CartError(
                400,
                "INSUFFICIENT_STOCK",
                f"Cannot add {quantity - already} more items. Only {max(0, stock - already)} more available",
            )
        raise CartError(400, "INSUFFICIENT_STOCK", f"Only {stock} items available in stock")


def _find_line(cart: Cart, line_id: int) -> CartItem:
    for it in cart.items:
        if it.id == line_id:
            return it
    raise CartError(404, "CART_ITEM_NOT_FOUND", "Item not found in cart")


def add_line(
    db: Session,
    cart: Cart,
    product_id: int,
    quantity: int = 1,
    variant: Optional[dict] = None,
) -> CartItem:
    book = PriceBook(db)
    product = book.product(product_id)
    if product is None:
        raise CartError(404, "PRODUCT_NOT_FOUND", "Product not found")
    if not is_purchasable(product):
        raise CartError(400, "PRODUCT_NOT_AVAILABLE", "Product is not available for purchase")
    _check_stock(product, quantity)

    v_name = (variant or {}).get("name")
    v_value = (variant or {}).get("value")
    v_price = Decimal("0")
    if v_name and v_value:
        pv = book.find_variant(product_id, v_name, v_value)
        if pv is None:
            raise CartError(400, "VARIANT_NOT_FOUND", f"Variant {v_name}={v_value} not found")
        v_price = Decimal(str(pv.price or 0))
    else:
        v_name = v_value = None

    price = Decimal(str(product.price))
    line = next(
        (
            it
            for it in cart.items
            if it.product_id == product_id
            and it.variant_name == v_name
            and it.variant_value == v_value
        ),
        None,
    )
    if line is not None:
        new_qty = int(line.quantity) + quantity
        _check_stock(product, new_qty, already=int(line.quantity))
        line.quantity = new_qty
        line.price = price
        line.variant_price = v_price
    else:
        line = CartItem(
            product_id=product_id,
            quantity=quantity,
            variant_name=v_name,
            variant_value=v_value,
            variant_price=v_price,
            price=price,
        )
        cart.items.append(line)

    recalculate(cart)
    return line


def update_line(db: Session, cart: Cart, line_id: int, quantity: int) -> CartItem:
    if quantity < 1:
        raise CartError(400, "INVALID_QUANTITY", "Quantity must be at least 1")
    line = _find_line(cart, line_id)
    product = PriceBook(db).product(line.product_id)
    if product is None:
        raise CartError(404, "PRODUCT_NOT_FOUND", "Product not found")
    if not is_purchasable(product):
        raise CartError(400, "PRODUCT_NOT_AVAILABLE", "Product is not available for purchase")
    _check_stock(product, quantity)
    line.quantity = quantity
    recalculate(cart)
    return line


def remove_line(cart: Cart, line_id: int) -> None:
    line = _find_line(cart, line_id)
    cart.items.remove(line)
    recalculate(cart)


def clear_cart(cart: Cart) -> None:
    cart.items.clear()
    cart.applied_coupon = None
    recalculate(cart)


def set_shipping_method(cart: Cart, method: str) -> None:
    if method not in SHIPPING_METHODS:
        raise CartError(
            400,
            "INVALID_SHIPPING_METHOD",
            "Invalid shipping method. Choose from: " + ", ".join(SHIPPING_METHODS),
        )
    cart.shipping_method = method
    recalculate(cart)


def apply_promotion(cart: Cart, coupon) -> None:
    """Reemplaza (nunca acumula) el cupón aplicado."""
    cart.applied_coupon = {
        "code": coupon.code,
        "name": coupon.name,
        "type": coupon.type,
        "value": _s(coupon.value),
        "max_discount": _s(coupon.max_discount) if coupon.type == PromotionKind.PERCENTAGE else None,
        "minimum_order_value": _s(coupon.minimum_order_value) if coupon.minimum_order_value else None,
        "maximum_order_value": _s(coupon.maximum_order_value),
        "buy_quantity": coupon.buy_quantity,
        "get_quantity": coupon.get_quantity,
        "get_discount": _s(coupon.get_discount),
        "savings": "0",
        "applied_at": datetime.utcnow().isoformat(timespec="seconds"),
    }
    recalculate(cart)
    logger.info("cart %s: coupon %s applied", cart.id, coupon.code)


def remove_promotion(cart: Cart) -> None:
    if not cart.applied_coupon:
        raise CartError(400, "NO_COUPON_APPLIED", "No coupon applied to cart")
    code = cart.applied_coupon.get("code")
    cart.applied_coupon = None
    recalculate(cart)
    logger.info("cart %s: coupon %s removed", cart.id, code)


def revalidate(db: Session, cart: Cart) -> bool:
    """
    Contrasta las líneas con el catálogo vivo: quita productos no comprables
    o sin stock, recorta cantidades al stock y refresca precios. Devuelve
    True si algo cambió (y en ese caso recalcula).
    """
    book = PriceBook(db)
    changed = False
    for it in list(cart.items):
        product = book.product(it.product_id)
        if not is_purchasable(product):
            logger.info("cart %s: product %s no longer available, dropped", cart.id, it.product_id)
            cart.items.remove(it)
            changed = True
            continue

        pv = None
        if it.variant_name:
            pv = book.find_variant(it.product_id, it.variant_name, it.variant_value)
            if pv is None:
                logger.info(
                    "cart %s: variant %s=%s of product %s gone, dropped",
                    cart.id, it.variant_name, it.variant_value, it.product_id,
                )
                cart.items.remove(it)
                changed = True
                continue

        if product.track_quantity and it.quantity > int(product.stock or 0):
            if int(product.stock or 0) > 0:
                it.quantity = int(product.stock)
                changed = True
            else:
                logger.info("cart %s: product %s out of stock, dropped", cart.id, it.product_id)
                cart.items.remove(it)
                changed = True
                continue

        live = Decimal(str(product.price))
        if Decimal(str(it.price)) != live:
            logger.info(
                "cart %s: product %s repriced %s -> %s", cart.id, it.product_id, it.price, live
            )
            it.price = live
            changed = True

        if pv is not None:
            adder = Decimal(str(pv.price or 0))
            if Decimal(str(it.variant_price or 0)) != adder:
                it.variant_price = adder
                changed = True

    if changed:
        recalculate(cart)
    return changed


# --- serialización ---


def _f(v) -> float:
    return float(v or 0)


def serialize_line(it: CartItem) -> dict:
    variant = None
    if it.variant_name:
        variant = {"name": it.variant_name, "value": it.variant_value, "price": _f(it.variant_price)}
    return {
        "line_id": it.id,
        "product_id": it.product_id,
        "name": it.product.name if it.product else None,
        "quantity": int(it.quantity),
        "price": _f(it.price),
        "variant": variant,
        "subtotal": float(round2((Decimal(str(it.price)) + Decimal(str(it.variant_price or 0))) * it.quantity)),
        "added_at": it.added_at.isoformat() if it.added_at else None,
    }


def serialize_totals(cart: Cart) -> dict:
    return {
        "subtotal": _f(cart.subtotal),
        "tax": _f(cart.tax),
        "tax_rate": _f(cart.tax_rate),
        "shipping": _f(cart.shipping),
        "discount": _f(cart.discount),
        "total": _f(cart.total),
    }


def serialize_coupon(cart: Cart) -> Optional[dict]:
    ac = cart.applied_coupon
    if not ac:
        return None
    return {
        "code": ac.get("code"),
        "name": ac.get("name"),
        "type": ac.get("type"),
        "discount": _f(ac.get("value")),
        "savings": _f(ac.get("savings")),
        "applied_at": ac.get("applied_at"),
    }


def serialize_cart(cart: Cart) -> dict:
    return {
        "cart_id": cart.id,
        "user_id": cart.user_id,
        "items": [serialize_line(it) for it in cart.items],
        "items_count": sum(int(it.quantity) for it in cart.items),
        "unique_items_count": len(cart.items),
        "totals": serialize_totals(cart),
        "applied_coupon": serialize_coupon(cart),
        "shipping_method": cart.shipping_method,
        "estimated_delivery": cart.estimated_delivery.isoformat() if cart.estimated_delivery else None,
    }


def summary(cart: Cart) -> dict:
    if not cart.items:
        raise CartError(404, "CART_EMPTY", "Cart is empty")
    data = serialize_cart(cart)
    data.pop("user_id")
    return data
