from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from ..db import Base


class Category(Base):
    __tablename__ = "category"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(80), nullable=False)
    slug = Column(String(80), unique=True, index=True)


class Product(Base):
    __tablename__ = "product"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    slug = Column(String(140), unique=True, index=True, nullable=True)
    category_id = Column(Integer, ForeignKey("category.id"), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), default="active")  # draft | active | archived
    visibility = Column(String(20), default="public")  # public | private | hidden
    track_quantity = Column(Boolean, default=True)
    stock = Column(Integer, default=0)

    category = relationship("Category")
    variants = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )


class ProductVariant(Base):
    __tablename__ = "product_variant"
    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("product.id"), nullable=False)
    name = Column(String(50), nullable=False)  # p.ej. "size"
    value = Column(String(50), nullable=False)  # p.ej. "XL"
    price = Column(Numeric(12, 2), default=0)  # se suma al precio base

    __table_args__ = (Index("ix_variant_prod_name_value", "product_id", "name", "value", unique=True),)

    product = relationship("Product", back_populates="variants")
