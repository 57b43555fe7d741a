import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from ..models.coupon import Coupon, CouponUsage

logger = logging.getLogger(__name__)


def record_coupon_usage(db: Session, coupon: Coupon, order, savings) -> bool:
    """
    Idempotente: registra el uso del cupón para la orden (coupon_usage,
    único por cupón+orden). Sólo si el registro es nuevo suma +1 a
    coupon.used_count y actualiza la analítica. Si ya existía, no duplica.
    """
    dup = db.query(CouponUsage).filter_by(coupon_id=coupon.id, order_id=order.id).first()
    if dup:
        return False

    savings = Decimal(str(savings or 0))
    db.add(CouponUsage(coupon_id=coupon.id, order_id=order.id, user_id=order.user_id, savings=savings))
    coupon.used_count = int(coupon.used_count or 0) + 1
    coupon.total_uses = int(coupon.total_uses or 0) + 1
    coupon.total_discount_given = Decimal(str(coupon.total_discount_given or 0)) + savings
    coupon.total_order_value = Decimal(str(coupon.total_order_value or 0)) + Decimal(
        str(order.total or 0)
    )
    logger.info("coupon %s used by order %s (savings=%s)", coupon.code, order.order_no, savings)
    # commit lo hace el caller (checkout)
    return True


def coupon_stats(coupon: Coupon) -> dict:
    uses = int(coupon.total_uses or 0)
    order_value = float(coupon.total_order_value or 0)
    remaining = None
    if coupon.usage_limit is not None:
        remaining = max(0, coupon.usage_limit - int(coupon.used_count or 0))
    return {
        "coupon_id": coupon.id,
        "code": coupon.code,
        "used_count": int(coupon.used_count or 0),
        "usage_limit": coupon.usage_limit,
        "remaining_uses": remaining,
        "total_uses": uses,
        "total_discount_given": float(coupon.total_discount_given or 0),
        "total_order_value": order_value,
        "average_order_value": round(order_value / uses, 2) if uses else 0.0,
    }
