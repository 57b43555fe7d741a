from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.config import settings
from ..db import get_db
from ..models.coupon import Coupon
from ..services import cart as cart_service
from ..services.cart import CartError
from ..services.coupon_rules import CouponRejected, check_coupon_for_cart, get_coupon, normalize_code
from ..services.coupon_usage import coupon_stats
from ..services.pricing import calculate_totals, round2

router = APIRouter(prefix="/coupons", tags=["coupons"])

CouponType = Literal["percentage", "fixed", "free-shipping", "buy-x-get-y"]


class CodeBody(BaseModel):
    code: str


def _naive_utc(v: Optional[datetime]) -> Optional[datetime]:
    # SQLite guarda fechas naive en UTC
    if v is not None and v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


def _coupon_errors(type_, value, minimum, maximum) -> Optional[str]:
    if type_ == "percentage" and value is not None and value > 100:
        return "PERCENTAGE_OVER_100"
    if maximum is not None and minimum is not None and minimum > maximum:
        return "MINIMUM_ABOVE_MAXIMUM"
    return None


class CouponIn(BaseModel):
    code: str = Field(..., min_length=3, max_length=20, pattern=r"^[A-Za-z0-9]+$")
    name: str = Field(..., max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: CouponType
    value: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)
    minimum_order_value: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_order_value: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    usage_limit_per_user: int = Field(default=1, ge=1)
    start_date: datetime
    end_date: datetime
    applicable_products: list[int] = Field(default_factory=list)
    applicable_categories: list[int] = Field(default_factory=list)
    excluded_products: list[int] = Field(default_factory=list)
    excluded_categories: list[int] = Field(default_factory=list)
    applicable_users: list[int] = Field(default_factory=list)
    excluded_users: list[int] = Field(default_factory=list)
    new_users_only: bool = False
    buy_quantity: Optional[int] = Field(default=None, ge=1)
    get_quantity: Optional[int] = Field(default=None, ge=1)
    get_discount: Optional[Decimal] = Field(default=None, ge=0, le=100)
    is_active: bool = True

    normalize_dates = field_validator("start_date", "end_date")(_naive_utc)

    @model_validator(mode="after")
    def _check(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if self.type == "buy-x-get-y" and not (self.buy_quantity and self.get_quantity):
            raise ValueError("buy-x-get-y coupons need buy_quantity and get_quantity")
        err = _coupon_errors(
            self.type, self.value, self.minimum_order_value, self.maximum_order_value
        )
        if err:
            raise ValueError(err)
        return self


class CouponPatch(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    value: Optional[Decimal] = Field(default=None, ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)
    minimum_order_value: Optional[Decimal] = Field(default=None, ge=0)
    maximum_order_value: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    usage_limit_per_user: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None

    normalize_dates = field_validator("start_date", "end_date")(_naive_utc)


def _serialize(c: Coupon) -> dict:
    return {
        "id": c.id,
        "code": c.code,
        "name": c.name,
        "description": c.description,
        "type": c.type,
        "value": float(c.value or 0),
        "max_discount": float(c.max_discount) if c.max_discount is not None else None,
        "minimum_order_value": float(c.minimum_order_value or 0),
        "maximum_order_value": (
            float(c.maximum_order_value) if c.maximum_order_value is not None else None
        ),
        "usage_limit": c.usage_limit,
        "usage_limit_per_user": c.usage_limit_per_user,
        "used_count": int(c.used_count or 0),
        "start_date": c.start_date.isoformat() if c.start_date else None,
        "end_date": c.end_date.isoformat() if c.end_date else None,
        "is_active": bool(c.is_active),
    }


def _rejected(e: CouponRejected):
    raise HTTPException(status_code=e.status_code, detail=e.code)


def _cart_with_items(db: Session, user_id: int):
    cart = cart_service.get_cart(db, user_id)
    if cart is not None:
        cart_service.revalidate(db, cart)
    if cart is None or not cart.items:
        raise HTTPException(status_code=400, detail="CART_EMPTY")
    return cart


# --- cliente ---


@router.get("/available")
def available_coupons(x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = cart_service.get_cart(db, x_user)
    cart_total = cart.subtotal if cart is not None else 0
    now = datetime.utcnow()
    rows = (
        db.query(Coupon)
        .filter(
            Coupon.is_active.is_(True),
            Coupon.start_date <= now,
            Coupon.end_date >= now,
            Coupon.minimum_order_value <= cart_total,
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .order_by(Coupon.value.desc())
        .limit(settings.available_coupons_limit)
        .all()
    )
    return {"count": len(rows), "data": [_serialize(c) for c in rows]}


@router.post("/validate")
def validate_coupon(body: CodeBody, x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = _cart_with_items(db, x_user)
    try:
        coupon = get_coupon(db, body.code)
        rule = check_coupon_for_cart(db, coupon, cart)
    except CouponRejected as e:
        db.rollback()
        _rejected(e)

    # vista previa: no se adjunta al carrito
    preview = calculate_totals(
        cart_service.cart_lines(cart), cart.shipping_method, rule, cart.tax_rate
    )
    result = {
        "coupon_id": coupon.id,
        "code": coupon.code,
        "valid": True,
        "apply_as": coupon.type,
        "value": float(coupon.value or 0),
        "savings": float(round2(preview.savings)),
        "new_total": float(preview.total),
        "reason": "OK",
    }
    # sólo persiste lo que haya corregido la revalidación
    db.commit()
    return result


@router.post("/apply")
def apply_coupon(body: CodeBody, x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = _cart_with_items(db, x_user)
    try:
        coupon = get_coupon(db, body.code)
        check_coupon_for_cart(db, coupon, cart)
    except CouponRejected as e:
        db.rollback()
        _rejected(e)

    cart_service.apply_promotion(cart, coupon)
    db.commit()
    db.refresh(cart)
    applied = cart_service.serialize_coupon(cart)
    return {
        "coupon": applied,
        "new_total": float(cart.total or 0),
        "savings": applied["savings"] if applied else 0.0,
        "cart": cart_service.serialize_cart(cart),
    }


@router.delete("/remove")
def remove_coupon(x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = cart_service.get_cart(db, x_user)
    if cart is None:
        raise HTTPException(status_code=404, detail="CART_NOT_FOUND")
    try:
        cart_service.remove_promotion(cart)
    except CartError as e:
        raise HTTPException(status_code=e.status_code, detail=e.code)
    db.commit()
    db.refresh(cart)
    return {"removed": True, "cart": cart_service.serialize_cart(cart)}


# --- administración ---


@router.post("", status_code=201)
def create_coupon(body: CouponIn, db: Session = Depends(get_db)):
    code = normalize_code(body.code)
    if db.query(Coupon).filter_by(code=code).first():
        raise HTTPException(status_code=409, detail="COUPON_CODE_EXISTS")
    c = Coupon(**body.model_dump(exclude={"code"}), code=code, used_count=0)
    db.add(c)
    db.commit()
    db.refresh(c)
    return _serialize(c)


@router.get("")
def list_coupons(active: Optional[bool] = None, db: Session = Depends(get_db)):
    q = db.query(Coupon)
    if active is not None:
        q = q.filter(Coupon.is_active.is_(active))
    rows = q.order_by(Coupon.created_at.desc()).all()
    return {"count": len(rows), "data": [_serialize(c) for c in rows]}


def _get_or_404(db: Session, coupon_id: int) -> Coupon:
    c = db.get(Coupon, coupon_id)
    if not c:
        raise HTTPException(status_code=404, detail="COUPON_NOT_FOUND")
    return c


@router.patch("/{coupon_id}")
def update_coupon(coupon_id: int, body: CouponPatch, db: Session = Depends(get_db)):
    c = _get_or_404(db, coupon_id)
    for k, v in body.model_dump(exclude_unset=True).items():
        setattr(c, k, v)
    if c.end_date <= c.start_date:
        db.rollback()
        raise HTTPException(status_code=422, detail="END_DATE_BEFORE_START_DATE")
    err = _coupon_errors(c.type, c.value, c.minimum_order_value, c.maximum_order_value)
    if err:
        db.rollback()
        raise HTTPException(status_code=422, detail=err)
    db.commit()
    db.refresh(c)
    return _serialize(c)


@router.delete("/{coupon_id}")
def delete_coupon(coupon_id: int, db: Session = Depends(get_db)):
    c = _get_or_404(db, coupon_id)
    if int(c.used_count or 0) > 0:
        # ya ligado a órdenes: sólo se desactiva
        c.is_active = False
        db.commit()
        return {"deleted": False, "deactivated": True, "id": coupon_id}
    db.delete(c)
    db.commit()
    return {"deleted": True, "id": coupon_id}


@router.get("/{coupon_id}/stats")
def get_coupon_stats(coupon_id: int, db: Session = Depends(get_db)):
    return coupon_stats(_get_or_404(db, coupon_id))
