import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.coupon import Coupon
from ..models.order import Order
from .pricing import HUNDRED, PromotionKind, PromotionRule

logger = logging.getLogger(__name__)


class CouponRejected(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def _ids(values) -> set:
    return {int(v) for v in (values or [])}


def _money(v) -> Optional[Decimal]:
    return None if v is None else Decimal(str(v))


def promotion_from_coupon(coupon: Coupon) -> PromotionRule:
    kind = PromotionKind(coupon.type)
    return PromotionRule(
        kind=kind,
        magnitude=_money(coupon.value) or Decimal("0"),
        cap=_money(coupon.max_discount) if kind == PromotionKind.PERCENTAGE else None,
        minimum_subtotal=_money(coupon.minimum_order_value) or None,
        maximum_subtotal=_money(coupon.maximum_order_value),
        buy_qty=int(coupon.buy_quantity or 1),
        get_qty=int(coupon.get_quantity or 1),
        get_discount_percent=(
            HUNDRED if coupon.get_discount is None else Decimal(str(coupon.get_discount))
        ),
        code=coupon.code,
    )


def check_eligibility(
    coupon: Coupon,
    *,
    user_id: int,
    subtotal: Decimal,
    lines: Iterable[tuple],
    user_uses: int = 0,
    user_orders: int = 0,
    now: Optional[datetime] = None,
) -> None:
    """
    Reglas conjuntivas de un cupón contra el carrito actual; la primera que
    falla lanza CouponRejected. ``lines`` son pares (product_id, category_id).
    """
    now = now or datetime.utcnow()
    lines = list(lines)

    # 1) activo y vigente
    if not coupon.is_active:
        raise CouponRejected("COUPON_INACTIVE", "Coupon is not active")
    if coupon.start_date and now < coupon.start_date:
        raise CouponRejected("COUPON_NOT_YET_VALID", "Coupon is not yet active")
    if coupon.end_date and now > coupon.end_date:
        raise CouponRejected("COUPON_EXPIRED", "Coupon has expired")

    # 2) límite global de usos
    if coupon.usage_limit is not None and int(coupon.used_count or 0) >= coupon.usage_limit:
        raise CouponRejected("COUPON_MAX_USES_REACHED", "Coupon usage limit reached")

    # 3) mínimo / máximo de compra
    minimum = _money(coupon.minimum_order_value) or Decimal("0")
    if subtotal < minimum:
        raise CouponRejected(
            "COUPON_MIN_AMOUNT_NOT_MET", f"Minimum order value of {minimum} required"
        )
    maximum = _money(coupon.maximum_order_value)
    if maximum and subtotal > maximum:
        raise CouponRejected(
            "COUPON_MAX_AMOUNT_EXCEEDED", f"Maximum order value of {maximum} exceeded"
        )

    # 4) usuarios
    if user_id in _ids(coupon.excluded_users):
        raise CouponRejected("COUPON_USER_EXCLUDED", "You are not eligible for this coupon")
    allowed_users = _ids(coupon.applicable_users)
    if allowed_users and user_id not in allowed_users:
        raise CouponRejected(
            "COUPON_USER_NOT_ALLOWED", "This coupon is not available for your account"
        )
    per_user = coupon.usage_limit_per_user
    if per_user is not None and user_uses >= per_user:
        raise CouponRejected("COUPON_ALREADY_USED", "You have already used this coupon")
    if coupon.new_users_only and user_orders > 0:
        raise CouponRejected("COUPON_NEW_USERS_ONLY", "This coupon is only for new users")

    # 5) productos / categorías
    excluded_products = _ids(coupon.excluded_products)
    excluded_categories = _ids(coupon.excluded_categories)
    for product_id, category_id in lines:
        if product_id in excluded_products or category_id in excluded_categories:
            raise CouponRejected(
                "COUPON_PRODUCT_EXCLUDED", "Cart contains products excluded from this coupon"
            )
    allowed_products = _ids(coupon.applicable_products)
    allowed_categories = _ids(coupon.applicable_categories)
    if allowed_products or allowed_categories:
        if not any(
            p in allowed_products or c in allowed_categories for p, c in lines
        ):
            raise CouponRejected(
                "COUPON_NOT_APPLICABLE", "Coupon does not apply to the products in your cart"
            )


def get_coupon(db: Session, code: str) -> Coupon:
    code = normalize_code(code)
    if not code:
        raise CouponRejected("COUPON_CODE_REQUIRED", "Coupon code is required")
    coupon = db.query(Coupon).filter(func.upper(Coupon.code) == code).first()
    if not coupon:
        raise CouponRejected("COUPON_NOT_FOUND", "Invalid coupon code", status_code=404)
    return coupon


def user_order_counts(db: Session, user_id: int, code: str) -> tuple[int, int]:
    """(órdenes con este código, órdenes totales) del usuario, sin canceladas."""
    base = db.query(func.count(Order.id)).filter(
        Order.user_id == user_id, Order.status != "cancelled"
    )
    with_code = base.filter(Order.coupon_code == code).scalar() or 0
    total = base.scalar() or 0
    return int(with_code), int(total)


def check_coupon_for_cart(db: Session, coupon: Coupon, cart, now: Optional[datetime] = None):
    uses, orders = user_order_counts(db, cart.user_id, coupon.code)
    lines = [(it.product_id, it.product.category_id if it.product else None) for it in cart.items]
    try:
        check_eligibility(
            coupon,
            user_id=cart.user_id,
            subtotal=Decimal(str(cart.subtotal or 0)),
            lines=lines,
            user_uses=uses,
            user_orders=orders,
            now=now,
        )
    except CouponRejected as e:
        logger.info("coupon %s rejected for user %s: %s", coupon.code, cart.user_id, e.code)
        raise
    return promotion_from_coupon(coupon)
