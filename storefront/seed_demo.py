from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from .db import Base, SessionLocal, engine
from .main import app  # noqa: F401  registra los modelos
from .models.coupon import Coupon
from .models.product import Category, Product, ProductVariant


def get_or_create(session: Session, model, defaults=None, **kwargs):
    inst = session.query(model).filter_by(**kwargs).first()
    if inst:
        return inst, False
    params = dict(kwargs)
    if defaults:
        params.update(defaults)
    inst = model(**params)
    session.add(inst)
    session.commit()
    session.refresh(inst)
    return inst, True


def main():
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()
    try:
        cat, _ = get_or_create(db, Category, slug="apparel", defaults={"name": "Apparel"})
        tee, _ = get_or_create(
            db,
            Product,
            slug="elm-tee",
            defaults={
                "name": "ELM Tee",
                "category_id": cat.id,
                "price": Decimal("299.99"),
                "stock": 100,
            },
        )
        get_or_create(db, ProductVariant, product_id=tee.id, name="size", value="XL",
                      defaults={"price": Decimal("50.00")})

        now = datetime.utcnow()
        window = {"start_date": now - timedelta(days=1), "end_date": now + timedelta(days=30)}
        get_or_create(db, Coupon, code="SAVE10", defaults={
            "name": "10% off", "type": "percentage", "value": Decimal("10"),
            "max_discount": Decimal("500"), **window,
        })
        get_or_create(db, Coupon, code="FLAT200", defaults={
            "name": "200 off", "type": "fixed", "value": Decimal("200"),
            "minimum_order_value": Decimal("1000"), **window,
        })
        get_or_create(db, Coupon, code="FREESHIP", defaults={
            "name": "Free shipping", "type": "free-shipping", "value": Decimal("0"), **window,
        })
        get_or_create(db, Coupon, code="B2G1", defaults={
            "name": "Buy 2 get 1", "type": "buy-x-get-y", "value": Decimal("0"),
            "buy_quantity": 2, "get_quantity": 1, "get_discount": Decimal("100"), **window,
        })

        print(f"Seed OK | product_id={tee.id} coupons=SAVE10,FLAT200,FREESHIP,B2G1")
    finally:
        db.close()


if __name__ == "__main__":
    main()
