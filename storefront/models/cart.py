from datetime import datetime, timedelta

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from ..core.config import settings
from ..db import Base


def _expires_at():
    return datetime.utcnow() + timedelta(days=settings.cart_ttl_days)


class Cart(Base):
    __tablename__ = "cart"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("customer.id"), unique=True, index=True, nullable=False)
    shipping_method = Column(String, default="standard")  # standard | express | overnight
    # Snapshot de totales (se recalcula en cada escritura)
    subtotal = Column(Numeric(12, 2), default=0)
    tax = Column(Numeric(12, 2), default=0)
    tax_rate = Column(Numeric(5, 4), default=settings.tax_rate)
    shipping = Column(Numeric(12, 2), default=0)
    discount = Column(Numeric(12, 2), default=0)
    total = Column(Numeric(12, 2), default=0)
    applied_coupon = Column(JSON)  # {code, name, type, value, ..., savings, applied_at}
    estimated_delivery = Column(DateTime)
    expires_at = Column(DateTime, default=_expires_at)
    updated_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )


class CartItem(Base):
    __tablename__ = "cart_item"
    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("cart.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("product.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    variant_name = Column(String)
    variant_value = Column(String)
    variant_price = Column(Numeric(12, 2), default=0)
    price = Column(Numeric(12, 2), nullable=False)
    added_at = Column(DateTime, default=datetime.utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
