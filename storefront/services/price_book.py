from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..models.product import Product, ProductVariant


def is_purchasable(product: Optional[Product]) -> bool:
    return bool(product) and product.status == "active" and product.visibility == "public"


class PriceBook:
    """Consulta de sólo lectura de precios vivos del catálogo."""

    def __init__(self, db: Session):
        self.db = db

    def product(self, product_id: int) -> Optional[Product]:
        return self.db.get(Product, product_id)

    def unit_price(self, product_id: int) -> Decimal:
        p = self.product(product_id)
        if p is None:
            raise KeyError(product_id)
        return Decimal(str(p.price))

    def find_variant(self, product_id: int, name: Optional[str], value: Optional[str]):
        if not name or not value:
            return None
        return (
            self.db.query(ProductVariant)
            .filter_by(product_id=product_id, name=name, value=value)
            .first()
        )

    def variant_adder(self, product_id: int, name: Optional[str], value: Optional[str]) -> Decimal:
        v = self.find_variant(product_id, name, value)
        return Decimal(str(v.price or 0)) if v else Decimal("0")
