import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..models.order import Order, OrderLine
from . import cart as cart_service
from .coupon_rules import check_coupon_for_cart, get_coupon
from .coupon_usage import record_coupon_usage
from .pricing import round2

logger = logging.getLogger(__name__)


def place_order(db: Session, user_id: int, now: Optional[datetime] = None) -> Order:
    """
    Convierte el carrito del usuario en una orden 'pending': revalida líneas,
    recalcula, vuelve a validar el cupón, descuenta stock, registra el uso del
    cupón y vacía el carrito. El commit lo hace el caller.
    """
    cart = cart_service.get_cart(db, user_id)
    if cart is None or not cart.items:
        raise cart_service.CartError(400, "CART_EMPTY", "Cart is empty")

    cart_service.revalidate(db, cart)
    if not cart.items:
        raise cart_service.CartError(400, "CART_EMPTY", "No purchasable items left in cart")
    cart_service.recalculate(cart, now=now)

    coupon = None
    savings = Decimal("0")
    if cart.applied_coupon:
        coupon = get_coupon(db, cart.applied_coupon["code"])
        check_coupon_for_cart(db, coupon, cart, now=now)
        savings = Decimal(str(cart.applied_coupon.get("savings") or 0))

    order = Order(
        user_id=user_id,
        shipping_method=cart.shipping_method,
        subtotal=cart.subtotal,
        tax=cart.tax,
        shipping=cart.shipping,
        discount=cart.discount,
        total=cart.total,
        coupon_code=coupon.code if coupon else None,
        coupon_savings=savings,
        status="pending",
        estimated_delivery=cart.estimated_delivery,
    )
    db.add(order)
    db.flush()
    order.order_no = f"ORD-{order.id:06d}"

    for it in cart.items:
        unit = Decimal(str(it.price))
        adder = Decimal(str(it.variant_price or 0))
        order.lines.append(
            OrderLine(
                product_id=it.product_id,
                quantity=it.quantity,
                unit_price=unit,
                variant_name=it.variant_name,
                variant_value=it.variant_value,
                variant_price=adder,
                line_total=round2((unit + adder) * it.quantity),
            )
        )
        product = it.product
        if product is not None and product.track_quantity:
            product.stock = int(product.stock or 0) - int(it.quantity)

    if coupon is not None:
        record_coupon_usage(db, coupon, order, savings)

    cart_service.clear_cart(cart)
    logger.info("order %s placed by user %s total=%s", order.order_no, user_id, order.total)
    return order
