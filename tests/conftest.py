import os
from datetime import datetime, timedelta
from decimal import Decimal

# Nunca tocar el archivo de desarrollo
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.db import Base, get_db
from storefront.main import create_app
from storefront.models.coupon import Coupon
from storefront.models.product import Category, Product, ProductVariant

USER = 1


@pytest.fixture
def engine():
    """SQLite en memoria compartida entre conexiones."""
    _engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(_engine, "connect")
    def _fk(dbapi_conn, _):
        dbapi_conn.execute("PRAGMA foreign_keys=ON;")

    Base.metadata.create_all(_engine)
    yield _engine
    Base.metadata.drop_all(_engine)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def client(session_factory):
    app = create_app()

    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    return TestClient(app, headers={"X-User": str(USER)})


@pytest.fixture
def category(db):
    c = Category(name="Apparel", slug="apparel")
    db.add(c)
    db.commit()
    return c


@pytest.fixture
def make_product(db, category):
    def _make(price="299.99", stock=100, variants=None, **kw):
        kw.setdefault("name", "ELM Tee")
        kw.setdefault("category_id", category.id)
        p = Product(price=Decimal(price), stock=stock, **kw)
        for name, value, adder in variants or []:
            p.variants.append(ProductVariant(name=name, value=value, price=Decimal(adder)))
        db.add(p)
        db.commit()
        db.refresh(p)
        return p

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code, type="percentage", value="10", **kw):
        now = datetime.utcnow()
        kw.setdefault("name", code)
        kw.setdefault("start_date", now - timedelta(days=1))
        kw.setdefault("end_date", now + timedelta(days=30))
        kw.setdefault("used_count", 0)
        c = Coupon(code=code, type=type, value=Decimal(value), **kw)
        db.add(c)
        db.commit()
        db.refresh(c)
        return c

    return _make
