import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .core.config import settings
from .core.logging import configure_logging
from .db import Base, engine
from .middleware.idempotency import install_idempotency

# IMPORTA MODELOS antes de create_all
from .models import cart as _cart_models  # noqa: F401
from .models import coupon as _coupon_models  # noqa: F401
from .models import customer as _customer_models  # noqa: F401
from .models import order as _order_models  # noqa: F401
from .models import product as _product_models  # noqa: F401
from .routers import cart, coupons, health, orders

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Crea tablas faltantes (desarrollo)
    Base.metadata.create_all(bind=engine)
    logger.info("%s %s started (env=%s)", settings.app_name, settings.app_version, settings.app_env)
    yield
    engine.dispose()


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    install_idempotency(app)
    app.include_router(health.router)
    app.include_router(cart.router)
    app.include_router(coupons.router)
    app.include_router(orders.router)
    return app


app = create_app()
