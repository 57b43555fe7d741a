from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from ..db import Base


class Order(Base):
    __tablename__ = "shop_order"
    id = Column(Integer, primary_key=True)
    order_no = Column(String, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("customer.id"), nullable=False, index=True)
    shipping_method = Column(String, nullable=False)
    subtotal = Column(Numeric(12, 2), default=0)
    tax = Column(Numeric(12, 2), default=0)
    shipping = Column(Numeric(12, 2), default=0)
    discount = Column(Numeric(12, 2), default=0)
    total = Column(Numeric(12, 2), default=0)
    coupon_code = Column(String, index=True)
    coupon_savings = Column(Numeric(12, 2), default=0)
    status = Column(String, default="pending")  # pending | paid | cancelled
    estimated_delivery = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    lines = relationship(
        "OrderLine", back_populates="order", cascade="all, delete-orphan", order_by="OrderLine.id"
    )


class OrderLine(Base):
    __tablename__ = "shop_order_line"
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("shop_order.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("product.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    variant_name = Column(String)
    variant_value = Column(String)
    variant_price = Column(Numeric(12, 2), default=0)
    line_total = Column(Numeric(12, 2), default=0)

    order = relationship("Order", back_populates="lines")
