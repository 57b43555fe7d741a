from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.order import Order
from ..services.cart import CartError
from ..services.checkout import place_order
from ..services.coupon_rules import CouponRejected

router = APIRouter(prefix="/orders", tags=["orders"])


def _serialize_order(o: Order):
    return {
        "order_id": o.id,
        "order_no": o.order_no,
        "status": o.status,
        "user_id": o.user_id,
        "shipping_method": o.shipping_method,
        "subtotal": float(o.subtotal or 0),
        "tax": float(o.tax or 0),
        "shipping": float(o.shipping or 0),
        "discount": float(o.discount or 0),
        "total": float(o.total or 0),
        "coupon_code": o.coupon_code,
        "coupon_savings": float(o.coupon_savings or 0),
        "estimated_delivery": o.estimated_delivery.isoformat() if o.estimated_delivery else None,
        "lines": [
            {
                "line_id": l.id,
                "product_id": l.product_id,
                "quantity": int(l.quantity),
                "unit_price": float(l.unit_price),
                "variant": (
                    {"name": l.variant_name, "value": l.variant_value, "price": float(l.variant_price or 0)}
                    if l.variant_name
                    else None
                ),
                "line_total": float(l.line_total),
            }
            for l in o.lines
        ],
    }


@router.post("")
def checkout(x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    try:
        order = place_order(db, x_user)
    except (CartError, CouponRejected) as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.code)
    db.commit()
    db.refresh(order)
    return _serialize_order(order)


@router.get("/{order_id}")
def get_order(order_id: int, x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    o = db.get(Order, order_id)
    if not o or o.user_id != x_user:
        raise HTTPException(status_code=404, detail="ORDER_NOT_FOUND")
    return _serialize_order(o)
