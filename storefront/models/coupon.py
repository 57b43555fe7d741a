from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from ..db import Base


class Coupon(Base):
    __tablename__ = "coupon"
    id = Column(Integer, primary_key=True)
    code = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(String(500))
    type = Column(String, nullable=False)  # percentage | fixed | free-shipping | buy-x-get-y
    value = Column(Numeric(12, 2), nullable=False, default=0)
    max_discount = Column(Numeric(12, 2))  # tope, sólo percentage
    minimum_order_value = Column(Numeric(12, 2), default=0)
    maximum_order_value = Column(Numeric(12, 2))
    usage_limit = Column(Integer)  # None = ilimitado
    usage_limit_per_user = Column(Integer, default=1)
    used_count = Column(Integer, default=0)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    # Listas de ids (JSON)
    applicable_products = Column(JSON, default=list)
    applicable_categories = Column(JSON, default=list)
    excluded_products = Column(JSON, default=list)
    excluded_categories = Column(JSON, default=list)
    applicable_users = Column(JSON, default=list)
    excluded_users = Column(JSON, default=list)
    new_users_only = Column(Boolean, default=False)
    # buy-x-get-y
    buy_quantity = Column(Integer)
    get_quantity = Column(Integer)
    get_discount = Column(Numeric(5, 2))  # % sobre las unidades "get"
    is_active = Column(Boolean, default=True)
    # Analítica
    total_uses = Column(Integer, default=0)
    total_discount_given = Column(Numeric(12, 2), default=0)
    total_order_value = Column(Numeric(12, 2), default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


class CouponUsage(Base):
    __tablename__ = "coupon_usage"
    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupon.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("shop_order.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("customer.id"), nullable=False)
    savings = Column(Numeric(12, 2), default=0)
    at = Column(DateTime, default=datetime.utcnow)
    __table_args__ = (UniqueConstraint("coupon_id", "order_id", name="uq_coupon_order"),)
