from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..services import cart as cart_service
from ..services.cart import CartError

router = APIRouter(prefix="/cart", tags=["cart"])


class VariantIn(BaseModel):
    name: str
    value: str


class AddItemBody(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)
    variant: Optional[VariantIn] = None


class UpdateItemBody(BaseModel):
    quantity: int = Field(..., ge=1)


class ShippingBody(BaseModel):
    method: Literal["standard", "express", "overnight"]


def _fail(e: CartError):
    raise HTTPException(status_code=e.status_code, detail=e.code)


def _done(db: Session, cart):
    db.commit()
    db.refresh(cart)
    return cart_service.serialize_cart(cart)


@router.get("")
def get_cart(x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = cart_service.get_or_create_cart(db, x_user)
    # precios/stock vivos antes de mostrar
    cart_service.revalidate(db, cart)
    return _done(db, cart)


@router.post("/items")
def add_item(
    body: AddItemBody, x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)
):
    cart = cart_service.get_or_create_cart(db, x_user)
    try:
        variant = body.variant.model_dump() if body.variant else None
        cart_service.add_line(db, cart, body.product_id, body.quantity, variant)
    except CartError as e:
        db.rollback()
        _fail(e)
    return _done(db, cart)


@router.put("/items/{line_id}")
def update_item(
    line_id: int,
    body: UpdateItemBody,
    x_user: int = Header(alias="X-User"),
    db: Session = Depends(get_db),
):
    cart = cart_service.get_cart(db, x_user)
    if cart is None:
        raise HTTPException(status_code=404, detail="CART_NOT_FOUND")
    try:
        cart_service.update_line(db, cart, line_id, body.quantity)
    except CartError as e:
        db.rollback()
        _fail(e)
    return _done(db, cart)


@router.delete("/items/{line_id}")
def remove_item(line_id: int, x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = cart_service.get_cart(db, x_user)
    if cart is None:
        raise HTTPException(status_code=404, detail="CART_NOT_FOUND")
    try:
        cart_service.remove_line(cart, line_id)
    except CartError as e:
        db.rollback()
        _fail(e)
    return _done(db, cart)


@router.delete("")
def clear_cart(x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = cart_service.get_cart(db, x_user)
    if cart is None:
        raise HTTPException(status_code=404, detail="CART_NOT_FOUND")
    cart_service.clear_cart(cart)
    return _done(db, cart)


@router.put("/shipping")
def update_shipping(
    body: ShippingBody, x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)
):
    cart = cart_service.get_cart(db, x_user)
    if cart is None:
        raise HTTPException(status_code=404, detail="CART_NOT_FOUND")
    cart_service.set_shipping_method(cart, body.method)
    return _done(db, cart)


@router.get("/summary")
def cart_summary(x_user: int = Header(alias="X-User"), db: Session = Depends(get_db)):
    cart = cart_service.get_cart(db, x_user)
    if cart is None:
        raise HTTPException(status_code=404, detail="CART_EMPTY")
    try:
        return cart_service.summary(cart)
    except CartError as e:
        _fail(e)
